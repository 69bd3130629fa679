import random

import matplotlib
import pytest

matplotlib.use("Agg")

from transform_logger import TransformLogger  # noqa: E402


@pytest.fixture
def quiet_logger():
    logger = TransformLogger(echo=False)
    yield logger
    logger.close()


@pytest.fixture
def random_bytes():
    rng = random.Random(1234)
    return bytes(rng.getrandbits(8) for _ in range(2000))


@pytest.fixture
def sample_text():
    return (
        b"The quick brown fox jumps over the lazy dog. "
        b"Pack my box with five dozen liquor jugs. "
        b"How vexingly quick daft zebras jump! "
    ) * 40
