"""
Policies that map an AnalysisReport to the transform to apply.

``AnalysisSelector`` is the canonical policy. The other selectors are
alternative strategies kept for comparison runs.
"""
import random

from pattern_analyzer import AnalysisReport, DataType
from transform_methods import TransformId


# Thresholds of the canonical policy
RUN_THRESHOLD = 4
SMALL_ALPHABET = 16
LOW_ENTROPY = 4.0


def select_transform(report: AnalysisReport) -> TransformId:
    """
    Canonical selection policy. First matching rule wins:

    1. a run of 4 or more identical symbols -> RUN_LENGTH
    2. at most 16 distinct symbols -> FREQUENCY_GROUP
    3. entropy below 4 bits/symbol -> SORT
    4. anything else -> PATTERN_CYCLE
    """
    if report.longest_run >= RUN_THRESHOLD:
        return TransformId.RUN_LENGTH
    if report.distinct_symbols <= SMALL_ALPHABET:
        return TransformId.FREQUENCY_GROUP
    if report.entropy < LOW_ENTROPY:
        return TransformId.SORT
    return TransformId.PATTERN_CYCLE


class AnalysisSelector:
    """Applies the canonical policy; the cycle number is ignored."""

    name = "analysis"

    def select(self, report, cycle=1):
        return select_transform(report)


class CycleIndexSelector:
    """
    Rotates strategies by cycle number (cycle % 4). The analysis only
    decides between RUN_LENGTH and SORT on the third slot.
    """

    name = "cycle"

    def select(self, report, cycle=1):
        slot = cycle % 4
        if slot == 0:
            return TransformId.FREQUENCY_GROUP
        if slot == 1:
            return TransformId.BWT
        if slot == 2:
            if report.entropy < 3.0:
                return TransformId.RUN_LENGTH
            return TransformId.SORT
        return TransformId.PATTERN_CYCLE


class DataTypeSelector:
    """
    Data-type driven layer on top of the canonical policy.
    """

    name = "datatype"

    BASE64_RANDOM_ENTROPY = 4.5
    DOMINANT_SYMBOL_SHARE = 0.2

    def __init__(self, fallback=None):
        self.fallback = fallback or AnalysisSelector()

    def select(self, report, cycle=1):
        if report.data_type == DataType.BASE64 and report.total_symbols:
            if report.entropy > self.BASE64_RANDOM_ENTROPY:
                return TransformId.FREQUENCY_GROUP
            if report.repeated_substrings:
                return TransformId.PATTERN_CYCLE
            return TransformId.BWT
        if report.data_type == DataType.TEXT:
            if report.top_symbol_share() > self.DOMINANT_SYMBOL_SHARE:
                return TransformId.RUN_LENGTH
        elif report.data_type == DataType.BINARY:
            return TransformId.MOVE_TO_FRONT
        return self.fallback.select(report, cycle)


class RandomSelector:
    """
    Uniform choice among a fixed set of transforms. The random source is
    injected so runs can be replayed from a seed.
    """

    name = "random"

    def __init__(self, transform_ids, rng=None):
        self.transform_ids = tuple(transform_ids)
        if not self.transform_ids:
            raise ValueError("RandomSelector needs at least one transform id")
        self.rng = rng if rng is not None else random.Random()

    def select(self, report, cycle=1):
        return self.rng.choice(self.transform_ids)


SELECTORS = {
    AnalysisSelector.name: AnalysisSelector,
    CycleIndexSelector.name: CycleIndexSelector,
    DataTypeSelector.name: DataTypeSelector,
}


def get_selector(name):
    """Build one of the deterministic selectors by name."""
    try:
        return SELECTORS[name]()
    except KeyError:
        raise ValueError(f"Unknown selector {name!r}; choose from {', '.join(SELECTORS)}") from None
