"""
Error taxonomy for the media pipeline.

Every framework call is checked where it returns; PyAV exceptions are
translated into one of the tagged errors below and propagated upward.
End-of-stream sentinels (``av.error.EOFError`` / ``av.error.BlockingIOError``)
are never translated -- they drive the drain state machine instead.
"""

import errno
from enum import Enum

import av


class ErrorKind(Enum):
    NOT_FOUND = "NotFound"
    MALFORMED = "Malformed"
    CODEC_UNAVAILABLE = "CodecUnavailable"
    UNKNOWN_FORMAT = "UnknownFormat"
    NO_SUCH_STREAM = "NoSuchStream"
    BAD_FILTER = "BadFilter"
    BAD_PARAMETER = "BadParameter"
    HARDWARE_UNAVAILABLE = "HardwareUnavailable"
    RESOURCE_EXHAUSTED = "ResourceExhausted"
    IO = "Io"


class MediaError(Exception):
    kind: ErrorKind = ErrorKind.IO

    def __init__(self, message: str, code: int | None = None):
        self.message = message
        self.code = code
        super().__init__(message)

    def render(self) -> str:
        """User-visible rendering, as printed by the CLI before exiting with status 1."""
        if self.code is not None:
            return f"FFmpeg error: {self.message}"
        return f"Error: {self.message}"


class NotFoundError(MediaError):
    kind = ErrorKind.NOT_FOUND


class MalformedError(MediaError):
    kind = ErrorKind.MALFORMED


class CodecUnavailableError(MediaError):
    kind = ErrorKind.CODEC_UNAVAILABLE


class UnknownFormatError(MediaError):
    kind = ErrorKind.UNKNOWN_FORMAT


class NoSuchStreamError(MediaError):
    kind = ErrorKind.NO_SUCH_STREAM


class BadFilterError(MediaError):
    kind = ErrorKind.BAD_FILTER


class BadParameterError(MediaError):
    kind = ErrorKind.BAD_PARAMETER


class HardwareUnavailableError(MediaError):
    kind = ErrorKind.HARDWARE_UNAVAILABLE


class ResourceExhaustedError(MediaError):
    kind = ErrorKind.RESOURCE_EXHAUSTED


class IoError(MediaError):
    kind = ErrorKind.IO


def _ffmpeg_code(exc: BaseException) -> int | None:
    if isinstance(exc, av.error.FFmpegError):
        return exc.errno
    return None


def translate_av_error(exc: BaseException, context: str, default: type[MediaError] = IoError) -> MediaError:
    """
    Map a PyAV / OS exception raised at a framework boundary onto the taxonomy.

    Args:
        exc: The exception caught from the framework call.
        context: Short description of the failing operation, prefixed to the message.
        default: Error class used when no more specific mapping applies.
    """
    if isinstance(exc, MediaError):
        return exc

    code = _ffmpeg_code(exc)
    message = f"{context}: {exc}"

    if isinstance(exc, MemoryError) or code == errno.ENOMEM:
        return ResourceExhaustedError(message, code)
    if isinstance(exc, FileNotFoundError):
        return NotFoundError(message, code)
    if isinstance(exc, av.error.InvalidDataError):
        return MalformedError(message, code)
    if isinstance(exc, av.error.DecoderNotFoundError | av.error.EncoderNotFoundError):
        return CodecUnavailableError(message, code)
    if isinstance(exc, av.error.FilterNotFoundError):
        return BadFilterError(message, code)
    if isinstance(exc, av.error.MuxerNotFoundError | av.error.DemuxerNotFoundError):
        return UnknownFormatError(message, code)
    if isinstance(exc, av.error.FFmpegError) and not isinstance(exc, OSError):
        return default(message, code)
    if isinstance(exc, OSError):
        return IoError(message, code)
    return default(message, code)
