"""
Exceptions raised by the transform pipeline.
"""


class TransformError(Exception):
    """Base class for all transform pipeline errors."""
    pass


class MalformedFrameError(TransformError, ValueError):
    """Raised when a self-describing frame cannot be decoded."""
    pass


class UnsupportedInputError(TransformError, ValueError):
    """Raised when an encoder is given text outside its valid range."""
    pass


class CodecUnavailableError(TransformError, LookupError):
    """Raised when no codec is registered for a transform id."""
    pass


class CompressorError(TransformError):
    """Raised when the external compressor cannot restore its input."""
    pass


class ArtifactFormatError(TransformError, ValueError):
    """
    Raised when a packed artifact has a bad header, or when the restored
    data does not match the recorded size or checksum.
    """
    pass
