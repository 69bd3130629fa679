from collections import Counter
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Tuple

import numpy as np


BASE64_ALPHABET = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/="
)

# Printable ASCII share at which data counts as text
TEXT_THRESHOLD = 0.9


class DataType(Enum):
    BASE64 = "BASE64"
    TEXT = "TEXT"
    BINARY = "BINARY"


@dataclass(frozen=True)
class AnalysisReport:
    """
    Statistics of one buffer, produced fresh for every pipeline cycle.
    """
    symbol_frequency: Mapping[str, int]
    ranked_symbols: Tuple[Tuple[str, int], ...]
    longest_run: int
    distinct_symbols: int
    entropy: float
    repeated_substrings: Tuple[Tuple[str, int], ...]
    data_type: DataType
    total_symbols: int

    def top_symbol_share(self):
        """Fraction of the buffer taken by its most frequent symbol."""
        if not self.ranked_symbols:
            return 0.0
        return self.ranked_symbols[0][1] / self.total_symbols

    def describe(self, top=5):
        """
        Build a short human-readable summary of the report.

        Args:
            top (int): How many symbols and substrings to list

        Returns:
            list: Lines of text
        """
        lines = [
            f"Data type: {self.data_type.value}",
            f"Symbols: {self.total_symbols} ({self.distinct_symbols} distinct)",
            f"Entropy: {self.entropy:.3f} bits/symbol",
            f"Longest run: {self.longest_run}",
        ]
        if self.ranked_symbols:
            lines.append("Most frequent symbols:")
            for symbol, count in self.ranked_symbols[:top]:
                share = count * 100.0 / self.total_symbols
                lines.append(f"  {symbol!r} (code {ord(symbol):3d}): {count} times ({share:.1f}%)")
        if self.repeated_substrings:
            lines.append("Repeated substrings:")
            for pattern, count in self.repeated_substrings[:top]:
                lines.append(f"  {pattern!r} - repeated {count} times")
        return lines


def calculate_entropy(frequency) -> float:
    """
    Compute Shannon entropy in bits per symbol from a symbol->count mapping.
    """
    counts = np.fromiter(frequency.values(), dtype=np.float64, count=len(frequency))
    total = counts.sum()
    if total == 0:
        return 0.0
    probs = counts / total
    entropy = float(-np.sum(probs * np.log2(probs)))
    # a single symbol gives -0.0
    return max(0.0, entropy)


def calculate_text_ratio(text: str) -> float:
    """
    Fraction of symbols that are printable ASCII (0x20-0x7E).
    """
    if not text:
        return 0.0
    printable = sum(1 for ch in text if 0x20 <= ord(ch) <= 0x7E)
    return printable / len(text)


def longest_run(text: str) -> int:
    """Length of the longest block of identical consecutive symbols."""
    if not text:
        return 0
    best = 1
    current = 1
    for i in range(1, len(text)):
        if text[i] == text[i - 1]:
            current += 1
            if current > best:
                best = current
        else:
            current = 1
    return best


def classify(text: str) -> DataType:
    # Base64 must be checked first: it is printable ASCII as well
    if all(ch in BASE64_ALPHABET for ch in text):
        return DataType.BASE64
    if calculate_text_ratio(text) >= TEXT_THRESHOLD:
        return DataType.TEXT
    return DataType.BINARY


class StatisticalAnalyzer:
    """
    Computes the statistics the transform selector works from: symbol
    frequencies, entropy, longest run, repeated substrings and a coarse
    data type.
    """

    MIN_PATTERN_LENGTH = 2
    MAX_PATTERN_LENGTH = 10
    MIN_OCCURRENCES = 3

    def __init__(self, min_pattern_length=None, max_pattern_length=None, min_occurrences=None):
        """
        Args:
            min_pattern_length (int): shortest substring length to scan
            max_pattern_length (int): longest substring length to scan
            min_occurrences (int): occurrences needed to report a substring
        """
        self.min_pattern_length = self.MIN_PATTERN_LENGTH if min_pattern_length is None else min_pattern_length
        self.max_pattern_length = self.MAX_PATTERN_LENGTH if max_pattern_length is None else max_pattern_length
        self.min_occurrences = self.MIN_OCCURRENCES if min_occurrences is None else min_occurrences
        if self.min_pattern_length < 1 or self.max_pattern_length < self.min_pattern_length:
            raise ValueError(
                f"Invalid pattern length range {self.min_pattern_length}..{self.max_pattern_length}"
            )
        if self.min_occurrences < 1:
            raise ValueError(f"min_occurrences must be at least 1, got {self.min_occurrences}")

    def analyze(self, text: str) -> AnalysisReport:
        """
        Analyze a buffer of text.

        Args:
            text (str): Data to analyze, one symbol per character

        Returns:
            AnalysisReport: Immutable statistics for this buffer
        """
        frequency = Counter(text)
        ranked = tuple(frequency.most_common())

        return AnalysisReport(
            symbol_frequency=MappingProxyType(dict(frequency)),
            ranked_symbols=ranked,
            longest_run=longest_run(text),
            distinct_symbols=len(frequency),
            entropy=calculate_entropy(frequency),
            repeated_substrings=self.find_repetitions(text),
            data_type=classify(text),
            total_symbols=len(text),
        )

    def find_repetitions(self, text: str):
        """
        Find substrings that occur at least ``min_occurrences`` times.

        One pass per candidate length; occurrences may overlap. Results are
        ranked by count, then by length, both descending. Equal entries keep
        the order in which they were first seen.

        Args:
            text (str): Data to scan

        Returns:
            tuple: (substring, count) pairs
        """
        patterns = []
        for length in range(self.min_pattern_length, self.max_pattern_length + 1):
            if length > len(text):
                break
            counts = Counter(text[i:i + length] for i in range(len(text) - length + 1))
            for pattern, count in counts.items():
                if count >= self.min_occurrences:
                    patterns.append((pattern, count))

        patterns.sort(key=lambda p: (-p[1], -len(p[0])))
        return tuple(patterns)


def analyze(text: str) -> AnalysisReport:
    """Analyze ``text`` with the default scan settings."""
    return StatisticalAnalyzer().analyze(text)


if __name__ == "__main__":
    sample = "A" * 100 + "XYZ" * 50 + "1234567890" * 30
    for line in analyze(sample).describe():
        print(line)
