import math

import pytest

from pattern_analyzer import (
    DataType,
    StatisticalAnalyzer,
    analyze,
    calculate_entropy,
    calculate_text_ratio,
    classify,
    longest_run,
)


@pytest.mark.parametrize("text", [
    "ab",
    "banana",
    "Hello, World!",
    "aaaaaaab",
    "".join(map(chr, range(256))),
])
def test_entropy_bounds(text):
    report = analyze(text)
    assert 0.0 <= report.entropy <= math.log2(report.distinct_symbols) + 1e-9


@pytest.mark.parametrize("text", ["x", "xxxx", "z" * 1000])
def test_entropy_of_single_symbol_is_zero(text):
    assert analyze(text).entropy == 0.0


def test_entropy_values():
    assert calculate_entropy({}) == 0.0
    assert calculate_entropy({"a": 5, "b": 5}) == pytest.approx(1.0)
    assert calculate_entropy({"a": 1, "b": 1, "c": 1, "d": 1}) == pytest.approx(2.0)


def test_longest_run():
    assert longest_run("") == 0
    assert longest_run("a") == 1
    assert longest_run("aaabbbbc") == 4
    assert longest_run("q" * 37) == 37


def test_classification():
    assert classify("SGVsbG8=") == DataType.BASE64
    assert classify("Hello, World!") == DataType.TEXT
    assert classify(bytes(range(256)).decode("latin-1")) == DataType.BINARY


def test_classification_of_random_bytes(random_bytes):
    assert classify(random_bytes.decode("latin-1")) == DataType.BINARY


def test_empty_input_is_base64():
    assert classify("") == DataType.BASE64


def test_text_ratio_threshold():
    # 9 printable out of 10
    assert calculate_text_ratio("abcdefghi\x00") == pytest.approx(0.9)
    assert classify("abcdefghi\x00") == DataType.TEXT
    assert classify("abcdefgh\x00\x01") == DataType.BINARY


def test_find_repetitions_ranking():
    patterns = StatisticalAnalyzer().find_repetitions("abcabcabc")
    assert patterns[0] == ("abc", 3)
    assert set(patterns) == {("abc", 3), ("ab", 3), ("bc", 3)}


def test_find_repetitions_counts_overlaps():
    assert StatisticalAnalyzer().find_repetitions("aaaa") == (("aa", 3),)


def test_find_repetitions_respects_settings():
    analyzer = StatisticalAnalyzer(min_pattern_length=3, max_pattern_length=3, min_occurrences=2)
    assert analyzer.find_repetitions("xyzxyz") == (("xyz", 2),)


def test_invalid_pattern_range():
    with pytest.raises(ValueError):
        StatisticalAnalyzer(min_pattern_length=5, max_pattern_length=3)
    with pytest.raises(ValueError):
        StatisticalAnalyzer(min_pattern_length=0)
    with pytest.raises(ValueError):
        StatisticalAnalyzer(max_pattern_length=0)
    with pytest.raises(ValueError):
        StatisticalAnalyzer(min_occurrences=0)


def test_report_fields():
    report = analyze("aab")
    assert report.total_symbols == 3
    assert report.distinct_symbols == 2
    assert report.ranked_symbols == (("a", 2), ("b", 1))
    assert report.top_symbol_share() == pytest.approx(2 / 3)
    assert report.longest_run == 2


def test_report_is_immutable():
    report = analyze("abc")
    with pytest.raises(TypeError):
        report.symbol_frequency["a"] = 10


def test_empty_report():
    report = analyze("")
    assert report.total_symbols == 0
    assert report.entropy == 0.0
    assert report.top_symbol_share() == 0.0
    assert report.repeated_substrings == ()


def test_describe():
    lines = analyze("Hello, World!").describe()
    assert lines[0] == "Data type: TEXT"
    assert any("Most frequent symbols" in line for line in lines)
