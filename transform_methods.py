import sys
from abc import ABC, abstractmethod
from collections import Counter
from enum import IntEnum

import numpy as np

from transform_errors import (
    CodecUnavailableError,
    MalformedFrameError,
    UnsupportedInputError,
)


FIELD_SEPARATOR = "|"


class TransformId(IntEnum):
    """
    Closed set of transforms. The numeric values are the type ids stored
    in packed artifacts.
    """
    RUN_LENGTH = 1
    FREQUENCY_GROUP = 2
    SORT = 3
    PATTERN_CYCLE = 4
    BWT = 5
    MOVE_TO_FRONT = 6
    IDENTITY = 255


class TransformMethod(ABC):
    """
    Abstract base class for all reversible text transforms
    """
    @property
    @abstractmethod
    def type_id(self):
        """Return the TransformId of this transform"""
        pass

    @property
    def name(self):
        return TransformId(self.type_id).name

    @abstractmethod
    def encode(self, text):
        """
        Transform the given text

        Args:
            text (str): Text to transform

        Returns:
            tuple: (output text, params dict needed by decode)
        """
        pass

    @abstractmethod
    def decode(self, data, params):
        """
        Invert a previous encode

        Args:
            data (str): Output of encode
            params (dict): Params returned by encode

        Returns:
            str: The original text
        """
        pass


def _strip_tag(data, tag):
    if not data.startswith(tag):
        raise MalformedFrameError(f"Expected frame tag {tag!r}, got {data[:len(tag)]!r}")
    return data[len(tag):]


# -------------------------------------------------------------------
# Burrows-Wheeler Transform
# -------------------------------------------------------------------

def _sort_rotations(text):
    """
    Order the cyclic rotations of ``text`` lexicographically.

    Prefix doubling over cyclic ranks. Every pass is a stable sort over
    the start offsets, so identical rotations stay ordered by offset.

    Returns:
        numpy.ndarray: Start offsets in sorted rotation order
    """
    n = len(text)
    rank = np.fromiter((ord(ch) for ch in text), dtype=np.int64, count=n)
    step = 1
    while True:
        second = np.roll(rank, -step)
        order = np.lexsort((second, rank))

        first_sorted = rank[order]
        second_sorted = second[order]
        boundary = np.empty(n, dtype=bool)
        boundary[0] = True
        boundary[1:] = (first_sorted[1:] != first_sorted[:-1]) | (second_sorted[1:] != second_sorted[:-1])

        new_rank = np.empty(n, dtype=np.int64)
        new_rank[order] = np.cumsum(boundary) - 1
        rank = new_rank

        step *= 2
        if step >= n or rank[order[-1]] == n - 1:
            return order


def bwt_forward(text):
    """
    Forward Burrows-Wheeler Transform.

    Args:
        text (str): Input text

    Returns:
        tuple: (last column, recovery index)
    """
    n = len(text)
    if n <= 1:
        return text, 0

    order = _sort_rotations(text)
    last_column = "".join(text[(start + n - 1) % n] for start in order.tolist())
    # the row whose rotation starts at offset 0 is the original text
    recovery_index = int(np.flatnonzero(order == 0)[0])
    return last_column, recovery_index


def bwt_inverse(last_column, recovery_index):
    """
    Inverse Burrows-Wheeler Transform using the LF mapping.

    Args:
        last_column (str): BWT output
        recovery_index (int): Row of the original text

    Returns:
        str: The original text
    """
    n = len(last_column)
    if isinstance(recovery_index, bool) or not isinstance(recovery_index, (int, np.integer)):
        raise MalformedFrameError(f"BWT recovery index must be an integer, got {recovery_index!r}")
    if n == 0:
        if recovery_index != 0:
            raise MalformedFrameError(f"BWT recovery index {recovery_index} given for empty input")
        return ""
    if not 0 <= recovery_index < n:
        raise MalformedFrameError(f"BWT recovery index {recovery_index} out of range for length {n}")

    # sorted() is stable: equal symbols keep their order in the last column
    table = sorted(range(n), key=last_column.__getitem__)

    result = []
    current = int(recovery_index)
    for _ in range(n):
        position = table[current]
        result.append(last_column[position])
        current = position
    return "".join(result)


class BWTTransform(TransformMethod):
    """
    Burrows-Wheeler Transform. The recovery index travels in params.
    """
    @property
    def type_id(self):
        return TransformId.BWT

    def encode(self, text):
        last_column, recovery_index = bwt_forward(text)
        return last_column, {"recovery_index": recovery_index}

    def decode(self, data, params):
        if "recovery_index" not in params:
            raise MalformedFrameError("BWT decode needs a recovery_index parameter")
        return bwt_inverse(data, params["recovery_index"])


# -------------------------------------------------------------------
# Move-To-Front
# -------------------------------------------------------------------

MTF_ALPHABET_SIZE = 256


def mtf_encode(text):
    """
    Move-To-Front encode over the 256 byte values.

    Args:
        text (str): Text whose symbols are all below 256

    Returns:
        list: Index of each symbol in the recency list at the time it was seen
    """
    alphabet = list(range(MTF_ALPHABET_SIZE))
    indices = []
    for ch in text:
        code = ord(ch)
        if code >= MTF_ALPHABET_SIZE:
            raise UnsupportedInputError(f"Move-to-front symbol {code} is outside the byte range")
        index = alphabet.index(code)
        indices.append(index)
        del alphabet[index]
        alphabet.insert(0, code)
    return indices


def mtf_decode(indices):
    """Invert mtf_encode."""
    alphabet = list(range(MTF_ALPHABET_SIZE))
    result = []
    for index in indices:
        if not 0 <= index < MTF_ALPHABET_SIZE:
            raise MalformedFrameError(f"Move-to-front index {index} is outside the alphabet")
        code = alphabet[index]
        result.append(chr(code))
        del alphabet[index]
        alphabet.insert(0, code)
    return "".join(result)


class MoveToFrontTransform(TransformMethod):
    """
    Move-To-Front recoding. Frame: ``MTF|<one code point per index>``
    """
    TAG = "MTF|"

    @property
    def type_id(self):
        return TransformId.MOVE_TO_FRONT

    def encode(self, text):
        indices = mtf_encode(text)
        return self.TAG + "".join(map(chr, indices)), {}

    def decode(self, data, params):
        body = _strip_tag(data, self.TAG)
        return mtf_decode([ord(ch) for ch in body])


# -------------------------------------------------------------------
# Sort with embedded permutation
# -------------------------------------------------------------------

class SortTransform(TransformMethod):
    """
    Stable sort of the symbols, with each symbol's original position
    stored as one code point.

    Frame: ``SORT|<sorted symbols>|<positions>``
    """
    TAG = "SORT|"
    # positions are single 16-bit code units
    MAX_LENGTH = 65536

    @property
    def type_id(self):
        return TransformId.SORT

    def encode(self, text):
        if len(text) > self.MAX_LENGTH:
            raise UnsupportedInputError(
                f"Sort transform supports at most {self.MAX_LENGTH} symbols, got {len(text)}"
            )
        order = sorted(range(len(text)), key=text.__getitem__)
        symbols = "".join(text[i] for i in order)
        positions = "".join(map(chr, order))
        return self.TAG + symbols + FIELD_SEPARATOR + positions, {}

    def decode(self, data, params):
        body = _strip_tag(data, self.TAG)
        # both fields have the same length, so the separator sits in the middle
        if len(body) % 2 != 1:
            raise MalformedFrameError(f"Sort frame body has even length {len(body)}")
        n = len(body) // 2
        if body[n] != FIELD_SEPARATOR:
            raise MalformedFrameError("Sort frame separator missing")

        symbols = body[:n]
        positions = [ord(ch) for ch in body[n + 1:]]
        if sorted(positions) != list(range(n)):
            raise MalformedFrameError("Sort frame positions are not a permutation")

        result = [""] * n
        for symbol, position in zip(symbols, positions):
            result[position] = symbol
        return "".join(result)


# -------------------------------------------------------------------
# Frequency grouping
# -------------------------------------------------------------------

class FrequencyGroupTransform(TransformMethod):
    """
    Replace each symbol by its rank in a frequency-ordered header.

    Frame: ``FREQ|<distinct symbols, most frequent first>|<one index per symbol>``
    """
    TAG = "FREQ|"

    @property
    def type_id(self):
        return TransformId.FREQUENCY_GROUP

    def encode(self, text):
        # most_common keeps first-seen order between equal counts
        header = "".join(symbol for symbol, _ in Counter(text).most_common())
        index_of = {symbol: i for i, symbol in enumerate(header)}
        encoded = "".join(chr(index_of[ch]) for ch in text)

        body = header + FIELD_SEPARATOR + encoded
        if self._split(body) != (header, encoded):
            raise UnsupportedInputError("Frequency frame would not split back unambiguously")
        return self.TAG + body, {}

    def decode(self, data, params):
        header, encoded = self._split(_strip_tag(data, self.TAG))
        return "".join(header[ord(ch)] for ch in encoded)

    def _split(self, body):
        """
        Find the header/index separator. The header holds each symbol once,
        so the separator is the first or the second ``|``.
        """
        start = 0
        for _ in range(2):
            position = body.find(FIELD_SEPARATOR, start)
            if position < 0:
                break
            header, encoded = body[:position], body[position + 1:]
            if self._is_consistent(header, encoded):
                return header, encoded
            start = position + 1
        raise MalformedFrameError("Frequency frame has no consistent header")

    @staticmethod
    def _is_consistent(header, encoded):
        size = len(header)
        if len(set(header)) != size:
            return False

        counts = [0] * size
        first_seen = [0] * size
        for position, ch in enumerate(encoded):
            index = ord(ch)
            if index >= size:
                return False
            if counts[index] == 0:
                first_seen[index] = position
            counts[index] += 1

        # header order is count descending, then first occurrence
        for i in range(size):
            if counts[i] == 0:
                return False
            if i and (counts[i] > counts[i - 1] or
                      (counts[i] == counts[i - 1] and first_seen[i] < first_seen[i - 1])):
                return False
        return True


# -------------------------------------------------------------------
# Embedded run-length
# -------------------------------------------------------------------

class RunLengthTransform(TransformMethod):
    """
    Runs of four or more symbols become ``«<symbol><count>»`` with the
    count stored as one code point. Shorter runs are copied as they are.
    A literal ``«`` is always framed, so every ``«`` starts a frame.

    Frame: ``RLE|<data>``
    """
    TAG = "RLE|"
    FRAME_OPEN = "«"
    FRAME_CLOSE = "»"
    MIN_RUN = 4
    MAX_COUNT = sys.maxunicode

    @property
    def type_id(self):
        return TransformId.RUN_LENGTH

    def encode(self, text):
        output = [self.TAG]
        i = 0
        while i < len(text):
            current = text[i]
            j = i
            while j < len(text) and text[j] == current:
                j += 1
            count = j - i

            if count >= self.MIN_RUN or current == self.FRAME_OPEN:
                while count > 0:
                    chunk = min(count, self.MAX_COUNT)
                    output.append(self.FRAME_OPEN + current + chr(chunk) + self.FRAME_CLOSE)
                    count -= chunk
            else:
                output.append(current * count)
            i = j
        return "".join(output), {}

    def decode(self, data, params):
        body = _strip_tag(data, self.TAG)
        output = []
        i = 0
        while i < len(body):
            if body[i] == self.FRAME_OPEN:
                if i + 3 >= len(body) or body[i + 3] != self.FRAME_CLOSE:
                    raise MalformedFrameError(f"Unterminated run frame at offset {i}")
                count = ord(body[i + 2])
                if count == 0:
                    raise MalformedFrameError(f"Run frame with zero count at offset {i}")
                output.append(body[i + 1] * count)
                i += 4
            else:
                output.append(body[i])
                i += 1
        return "".join(output)


# -------------------------------------------------------------------
# Pattern cycle folding
# -------------------------------------------------------------------

def z_array(text):
    """z[i] is the length of the longest common prefix of text and text[i:]."""
    n = len(text)
    z = [0] * n
    if n:
        z[0] = n
    left = right = 0
    for i in range(1, n):
        if i < right:
            z[i] = min(right - i, z[i - left])
        while i + z[i] < n and text[z[i]] == text[i + z[i]]:
            z[i] += 1
        if i + z[i] > right:
            left, right = i, i + z[i]
    return z


def find_leading_cycle(text):
    """
    Find the pattern whose contiguous repeats from the start of ``text``
    cover the most symbols.

    Patterns are 1..len/2 symbols long and never contain the field
    separator. Ties go to the shorter pattern.

    Returns:
        tuple: (pattern, repeat count); ("", 0) when nothing repeats
    """
    limit = len(text) // 2
    separator = text.find(FIELD_SEPARATOR)
    if separator >= 0:
        limit = min(limit, separator)

    z = z_array(text)
    best_length, best_count, best_cover = 0, 0, 0
    for length in range(1, limit + 1):
        count = (length + z[length]) // length
        if count >= 2 and length * count > best_cover:
            best_length, best_count, best_cover = length, count, length * count

    if not best_count:
        return "", 0
    return text[:best_length], best_count


class PatternCycleTransform(TransformMethod):
    """
    Fold the leading repeated block into pattern + repeat count.

    Frame: ``CYC|<pattern>|<repeat count>|<remainder>``
    """
    TAG = "CYC|"
    # largest repeated block a frame may expand to
    MAX_OUTPUT = 1 << 32
    MAX_COUNT_DIGITS = 20

    @property
    def type_id(self):
        return TransformId.PATTERN_CYCLE

    def encode(self, text):
        pattern, count = find_leading_cycle(text)
        remainder = text[len(pattern) * count:]
        return f"{self.TAG}{pattern}{FIELD_SEPARATOR}{count}{FIELD_SEPARATOR}{remainder}", {}

    def decode(self, data, params):
        parts = _strip_tag(data, self.TAG).split(FIELD_SEPARATOR, 2)
        if len(parts) != 3:
            raise MalformedFrameError(f"Cycle frame needs 3 fields, got {len(parts)}")
        pattern, count_text, remainder = parts
        if not (count_text.isascii() and count_text.isdigit()):
            raise MalformedFrameError(f"Cycle frame repeat count {count_text!r} is not a number")
        if len(count_text) > self.MAX_COUNT_DIGITS:
            raise MalformedFrameError(f"Cycle frame repeat count has {len(count_text)} digits")
        try:
            count = int(count_text)
        except ValueError as e:
            raise MalformedFrameError(f"Cycle frame repeat count {count_text!r}: {e}") from e
        if len(pattern) * count > self.MAX_OUTPUT:
            raise MalformedFrameError(
                f"Cycle frame expands to {len(pattern) * count} symbols, limit is {self.MAX_OUTPUT}"
            )
        return pattern * count + remainder


# -------------------------------------------------------------------
# No transform
# -------------------------------------------------------------------

class NoTransform(TransformMethod):
    """
    Identity transform - used when the selected transform cannot take the input
    """
    @property
    def type_id(self):
        return TransformId.IDENTITY

    def encode(self, text):
        return text, {}

    def decode(self, data, params):
        return data


# -------------------------------------------------------------------
# Registry
# -------------------------------------------------------------------

class TransformRegistry:
    """
    Maps transform ids to transform instances. Built explicitly and
    handed to the pipeline.
    """

    def __init__(self, methods=()):
        self._methods = {}
        for method in methods:
            self.register(method)

    def register(self, method):
        self._methods[TransformId(method.type_id)] = method
        return method

    def get(self, transform_id):
        try:
            return self._methods[TransformId(transform_id)]
        except (KeyError, ValueError):
            raise CodecUnavailableError(f"No transform registered for id {transform_id!r}") from None

    def ids(self, include_identity=True):
        return tuple(
            tid for tid in self._methods
            if include_identity or tid != TransformId.IDENTITY
        )

    def __contains__(self, transform_id):
        try:
            return TransformId(transform_id) in self._methods
        except ValueError:
            return False

    def __iter__(self):
        return iter(self._methods.values())

    def __len__(self):
        return len(self._methods)


def default_registry():
    """Registry with every built-in transform."""
    return TransformRegistry([
        RunLengthTransform(),
        FrequencyGroupTransform(),
        SortTransform(),
        PatternCycleTransform(),
        BWTTransform(),
        MoveToFrontTransform(),
        NoTransform(),
    ])


if __name__ == "__main__":
    # Simple round trip of every transform
    def test_transform_methods():
        test_data = "AAAABBBCCDAAAABBBCCDA" * 20

        for method in default_registry():
            encoded, params = method.encode(test_data)
            decoded = method.decode(encoded, params)
            print(f"{method.name}: {len(test_data)} symbols -> {len(encoded)} symbols")
            print(f"{method.name} works correctly: {decoded == test_data}")

    test_transform_methods()
