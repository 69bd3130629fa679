import dataclasses
import hashlib
import random

import pytest

from external_compressors import GzipCompressor, ZstdCompressor
from transform_errors import (
    ArtifactFormatError,
    CodecUnavailableError,
    MalformedFrameError,
)
from transform_logger import TransformLogger
from transform_methods import (
    FrequencyGroupTransform,
    NoTransform,
    TransformId,
    TransformRegistry,
)
from transform_pipeline import (
    ChainEntry,
    CompressionArtifact,
    CompressionPipeline,
    pack_artifact,
    unpack_artifact,
)
from transform_selector import CycleIndexSelector


class FixedSelector:
    def __init__(self, transform_id):
        self.transform_id = transform_id

    def select(self, report, cycle=1):
        return self.transform_id


@pytest.fixture
def pipeline(quiet_logger):
    return CompressionPipeline(logger=quiet_logger)


@pytest.mark.parametrize("data", [
    b"",
    b"a",
    b"abc" * 1000,
    bytes(range(256)) * 4,
    b"\x00\xff" * 300 + b"|||" + "«»".encode("latin-1") * 50,
])
def test_round_trip(pipeline, data):
    artifact = pipeline.run(data)
    assert pipeline.decompress(artifact) == data


def test_round_trip_text_and_random(pipeline, sample_text, random_bytes):
    for data in (sample_text, random_bytes):
        assert pipeline.decompress(pipeline.run(data)) == data


@pytest.mark.parametrize("selector", [CycleIndexSelector(), FixedSelector(TransformId.BWT),
                                      FixedSelector(TransformId.MOVE_TO_FRONT)])
def test_round_trip_other_selectors(quiet_logger, sample_text, selector):
    pipeline = CompressionPipeline(selector=selector, logger=quiet_logger, size_floor=0)
    artifact = pipeline.run(sample_text, max_cycles=4)
    assert pipeline.decompress(artifact) == sample_text


def test_stops_when_first_cycle_does_not_shrink(pipeline, random_bytes):
    artifact = pipeline.run(random_bytes)
    stats = pipeline.last_stats

    assert len(artifact.chain) == 1
    assert len(artifact.compressed) == artifact.history[0].compressed_size
    assert stats['stop_reason'] == "no_improvement"
    assert [r.accepted for r in artifact.history] == [True, False]


def test_accepted_sizes_strictly_decrease(quiet_logger, sample_text):
    pipeline = CompressionPipeline(selector=CycleIndexSelector(), logger=quiet_logger, size_floor=0)
    artifact = pipeline.run(sample_text)
    sizes = [r.compressed_size for r in artifact.history if r.accepted]
    assert sizes == sorted(set(sizes), reverse=True)
    assert len(artifact.compressed) == sizes[-1]
    assert len(artifact.chain) == len(sizes)


def test_size_floor_stops_run(pipeline):
    pipeline.run(b"abc" * 1000)
    stats = pipeline.last_stats
    assert stats['compressed_size'] < CompressionPipeline.SIZE_FLOOR
    assert stats['stop_reason'] == "size_floor"


def test_zero_cycles_returns_input(pipeline):
    artifact = pipeline.run(b"unchanged", max_cycles=0)
    assert artifact.compressed == b"unchanged"
    assert artifact.chain == ()
    assert pipeline.decompress(artifact) == b"unchanged"
    assert pipeline.last_stats['stop_reason'] == "max_cycles"


def test_negative_cycles_rejected(pipeline):
    with pytest.raises(ValueError):
        pipeline.run(b"abc", max_cycles=-1)


def test_max_cycles_reached(pipeline, random_bytes):
    artifact = pipeline.run(random_bytes, max_cycles=1)
    assert len(artifact.chain) == 1
    assert pipeline.last_stats['stop_reason'] == "max_cycles"


def test_unsupported_input_falls_back_to_identity(quiet_logger):
    data = bytes(range(256)) * 300
    pipeline = CompressionPipeline(selector=FixedSelector(TransformId.SORT), logger=quiet_logger)
    artifact = pipeline.run(data, max_cycles=1)

    assert artifact.chain[0].transform_id == TransformId.IDENTITY
    assert artifact.history[0].fallback
    assert pipeline.decompress(artifact) == data


def test_missing_codec_is_fatal(quiet_logger):
    registry = TransformRegistry([FrequencyGroupTransform(), NoTransform()])
    pipeline = CompressionPipeline(registry=registry, selector=FixedSelector(TransformId.RUN_LENGTH),
                                   logger=quiet_logger)
    with pytest.raises(CodecUnavailableError):
        pipeline.run(b"aaaaaaaa")


def test_deterministic(quiet_logger, sample_text):
    first = CompressionPipeline(logger=quiet_logger).run(sample_text)
    second = CompressionPipeline(logger=quiet_logger).run(sample_text)
    assert first.compressed == second.compressed
    assert first.chain == second.chain


def test_artifact_metadata(pipeline, sample_text):
    artifact = pipeline.run(sample_text)
    assert artifact.original_size == len(sample_text)
    assert artifact.checksum == hashlib.md5(sample_text).digest()
    assert artifact.compressor == "gzip"
    assert artifact.ratio == len(artifact.compressed) / len(sample_text)


def test_stats(pipeline, sample_text):
    artifact = pipeline.run(sample_text)
    stats = pipeline.last_stats
    assert stats['original_size'] == len(sample_text)
    assert stats['compressed_size'] == len(artifact.compressed)
    assert stats['cycles'] == len(stats['size_history']) == len(stats['ratio_history'])
    assert stats['chain'] == [entry.name for entry in artifact.chain]
    assert sum(stats['transform_usage'].values()) == len(artifact.chain)
    assert stats['percent_reduction'] == pytest.approx((1 - stats['ratio']) * 100)


def test_checksum_mismatch(pipeline, sample_text):
    artifact = pipeline.run(sample_text)
    corrupted = dataclasses.replace(artifact, checksum=b"\x00" * 16)
    with pytest.raises(ArtifactFormatError):
        pipeline.decompress(corrupted)


def test_foreign_frame(pipeline):
    artifact = CompressionArtifact(
        compressed=GzipCompressor().compress(b"garbage"),
        chain=(ChainEntry(TransformId.RUN_LENGTH, {}),),
        original_size=7,
        checksum=hashlib.md5(b"garbage").digest(),
        compressor="gzip",
    )
    with pytest.raises(MalformedFrameError):
        pipeline.decompress(artifact)


def test_oversized_cycle_frame(pipeline):
    artifact = CompressionArtifact(
        compressed=GzipCompressor().compress(b"CYC|ab|999999999999|"),
        chain=(ChainEntry(TransformId.PATTERN_CYCLE, {}),),
        original_size=2,
        checksum=b"\x00" * 16,
        compressor="gzip",
    )
    with pytest.raises(MalformedFrameError):
        pipeline.decompress(artifact)


def test_decoded_symbol_outside_byte_range(pipeline):
    artifact = CompressionArtifact(
        compressed=GzipCompressor().compress("Ĭ".encode("utf-8")),
        chain=(ChainEntry(TransformId.IDENTITY, {}),),
        original_size=1,
        checksum=b"\x00" * 16,
        compressor="gzip",
    )
    with pytest.raises(MalformedFrameError):
        pipeline.decompress(artifact)


def test_pack_round_trip(quiet_logger, sample_text):
    pipeline = CompressionPipeline(selector=CycleIndexSelector(), logger=quiet_logger)
    artifact = pipeline.run(sample_text, max_cycles=1)
    assert artifact.chain[0].transform_id == TransformId.BWT

    restored = unpack_artifact(pack_artifact(artifact))
    assert restored.compressed == artifact.compressed
    assert restored.chain == artifact.chain
    assert restored.original_size == artifact.original_size
    assert restored.checksum == artifact.checksum
    assert restored.compressor == artifact.compressor
    assert pipeline.decompress(restored) == sample_text


def test_packed_artifact_remembers_compressor(quiet_logger, sample_text):
    packed = pack_artifact(CompressionPipeline(compressor=ZstdCompressor(), logger=quiet_logger).run(sample_text))
    artifact = unpack_artifact(packed)
    assert artifact.compressor == "zstd"
    assert CompressionPipeline(logger=quiet_logger).decompress(artifact) == sample_text


def test_pack_layout(pipeline):
    packed = pack_artifact(pipeline.run(b"abc" * 100))
    assert packed[:4] == CompressionPipeline.MAGIC_NUMBER
    assert packed[4] == CompressionPipeline.FORMAT_VERSION


def test_unpack_rejects_bad_data(pipeline, sample_text):
    packed = pack_artifact(pipeline.run(sample_text))
    with pytest.raises(ArtifactFormatError):
        unpack_artifact(b"XXXX" + packed[4:])
    with pytest.raises(ArtifactFormatError):
        unpack_artifact(packed[:-1])
    with pytest.raises(ArtifactFormatError):
        unpack_artifact(packed[:10])
    with pytest.raises(ArtifactFormatError):
        unpack_artifact(packed[:4] + bytes([99]) + packed[5:])


def test_file_round_trip(pipeline, sample_text, tmp_path):
    source = tmp_path / "input.txt"
    packed = tmp_path / "input.ptrn"
    restored = tmp_path / "restored.txt"
    source.write_bytes(sample_text)

    stats = pipeline.compress_file(source, packed)
    assert stats['packed_size'] == packed.stat().st_size

    stats = pipeline.decompress_file(packed, restored)
    assert restored.read_bytes() == sample_text
    assert stats['decompressed_size'] == len(sample_text)


def test_explore_respects_cycle_cap(quiet_logger, sample_text):
    pipeline = CompressionPipeline(logger=quiet_logger)
    artifact = pipeline.explore(sample_text, 10.0, rng=random.Random(7), clock=lambda: 0.0, max_cycles=5)

    assert pipeline.last_stats['cycles'] == 5
    assert pipeline.last_stats['stop_reason'] == "max_cycles"
    assert all(r.compressed_size < r.input_size for r in artifact.history if r.accepted)
    assert pipeline.decompress(artifact) == sample_text


def test_explore_checks_budget_between_cycles(quiet_logger, sample_text):
    ticks = iter([0.0, 0.0, 2.0])
    pipeline = CompressionPipeline(logger=quiet_logger)
    artifact = pipeline.explore(sample_text, 1.0, rng=random.Random(3), clock=lambda: next(ticks))

    assert pipeline.last_stats['cycles'] == 1
    assert pipeline.last_stats['stop_reason'] == "time_budget"
    assert pipeline.decompress(artifact) == sample_text


def test_explore_is_reproducible(quiet_logger, sample_text):
    runs = [
        CompressionPipeline(logger=quiet_logger).explore(
            sample_text, 10.0, rng=random.Random(11), clock=lambda: 0.0, max_cycles=4)
        for _ in range(2)
    ]
    assert runs[0].chain == runs[1].chain
    assert runs[0].compressed == runs[1].compressed


def test_explore_rejects_empty_budget(pipeline):
    with pytest.raises(ValueError):
        pipeline.explore(b"abc", 0)


def test_log_file(sample_text, tmp_path):
    log_path = tmp_path / "run.log"
    with TransformLogger(echo=False) as logger:
        logger.start(log_path)
        CompressionPipeline(logger=logger).run(sample_text)
    content = log_path.read_text(encoding="utf-8")
    assert "LOG STARTED" in content
    assert "Cycle 1:" in content
    assert "LOG FINISHED" in content
