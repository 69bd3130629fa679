import bz2
import gzip
import lzma
import zlib
from abc import ABC, abstractmethod

import lz4.frame
import zstandard as zstd

from transform_errors import CompressorError


class ExternalCompressor(ABC):
    """
    Lossless, deterministic byte compressor used at the tail of every
    pipeline cycle.
    """
    @property
    @abstractmethod
    def type_id(self):
        """Return the unique type identifier stored in packed artifacts"""
        pass

    @property
    @abstractmethod
    def name(self):
        pass

    @abstractmethod
    def compress(self, data: bytes) -> bytes:
        pass

    @abstractmethod
    def decompress(self, data: bytes) -> bytes:
        pass


# -------------------------------------------------------------------
# GZIP
# -------------------------------------------------------------------
class GzipCompressor(ExternalCompressor):
    def __init__(self, level=9):
        self.level = level

    @property
    def type_id(self):
        return 1

    @property
    def name(self):
        return "gzip"

    def compress(self, data):
        # mtime pinned so equal input gives equal output
        return gzip.compress(data, compresslevel=self.level, mtime=0)

    def decompress(self, data):
        try:
            return gzip.decompress(data)
        except (OSError, EOFError, zlib.error) as e:
            raise CompressorError(f"GZIP decompress error: {e}") from e

# -------------------------------------------------------------------
# DEFLATE
# -------------------------------------------------------------------
class DeflateCompressor(ExternalCompressor):
    def __init__(self, level=9):
        self.level = level

    @property
    def type_id(self):
        return 2

    @property
    def name(self):
        return "deflate"

    def compress(self, data):
        return zlib.compress(data, level=self.level)

    def decompress(self, data):
        try:
            return zlib.decompress(data)
        except zlib.error as e:
            raise CompressorError(f"DEFLATE decompress error: {e}") from e

# -------------------------------------------------------------------
# BZIP2
# -------------------------------------------------------------------
class Bzip2Compressor(ExternalCompressor):
    def __init__(self, level=9):
        self.level = level

    @property
    def type_id(self):
        return 3

    @property
    def name(self):
        return "bzip2"

    def compress(self, data):
        return bz2.compress(data, compresslevel=self.level)

    def decompress(self, data):
        try:
            return bz2.decompress(data)
        except (OSError, EOFError, ValueError) as e:
            raise CompressorError(f"BZIP2 decompress error: {e}") from e

# -------------------------------------------------------------------
# LZMA
# -------------------------------------------------------------------
class LZMACompressor(ExternalCompressor):
    """
    XZ container holding a single LZMA2 filter with a 16 MB dictionary.
    The filter chain replaces a preset level.
    """
    @property
    def type_id(self):
        return 4

    @property
    def name(self):
        return "lzma"

    def compress(self, data):
        filters = [
            {
                "id": lzma.FILTER_LZMA2,
                "dict_size": 1 << 24,  # 16 MB dictionary
            }
        ]
        compressor = lzma.LZMACompressor(
            format=lzma.FORMAT_XZ,
            check=lzma.CHECK_CRC64,
            filters=filters
        )
        return compressor.compress(data) + compressor.flush()

    def decompress(self, data):
        try:
            return lzma.decompress(data)
        except (lzma.LZMAError, EOFError) as e:
            raise CompressorError(f"LZMA decompress error: {e}") from e

# -------------------------------------------------------------------
# Zstandard
# -------------------------------------------------------------------
class ZstdCompressor(ExternalCompressor):
    def __init__(self, level=19):
        self.level = level  # near max

    @property
    def type_id(self):
        return 5

    @property
    def name(self):
        return "zstd"

    def compress(self, data):
        return zstd.ZstdCompressor(level=self.level).compress(data)

    def decompress(self, data):
        try:
            # content size is written by compress(), so no output bound is needed
            return zstd.ZstdDecompressor().decompress(data)
        except zstd.ZstdError as e:
            raise CompressorError(f"Zstd decompress error: {e}") from e

# -------------------------------------------------------------------
# LZ4
# -------------------------------------------------------------------
class LZ4Compressor(ExternalCompressor):
    def __init__(self, level=9):
        self.level = level

    @property
    def type_id(self):
        return 6

    @property
    def name(self):
        return "lz4"

    def compress(self, data):
        return lz4.frame.compress(data, compression_level=self.level)

    def decompress(self, data):
        try:
            return lz4.frame.decompress(data)
        except RuntimeError as e:
            raise CompressorError(f"LZ4 decompress error: {e}") from e


COMPRESSORS = {
    cls().name: cls
    for cls in (GzipCompressor, DeflateCompressor, Bzip2Compressor,
                LZMACompressor, ZstdCompressor, LZ4Compressor)
}

DEFAULT_COMPRESSOR = "gzip"


def get_compressor(name=DEFAULT_COMPRESSOR):
    """
    Build an external compressor by name.

    Args:
        name (str): One of COMPRESSORS

    Returns:
        ExternalCompressor: A fresh compressor instance
    """
    try:
        return COMPRESSORS[name]()
    except KeyError:
        raise ValueError(f"Unknown compressor {name!r}; choose from {', '.join(COMPRESSORS)}") from None


def get_compressor_by_id(type_id):
    for cls in COMPRESSORS.values():
        compressor = cls()
        if compressor.type_id == type_id:
            return compressor
    raise ValueError(f"Unknown compressor type id {type_id}")
