"""Exception hierarchy for cache decoding.

Every failure raised by the decoder is fatal to the current decode call.
Errors carry the byte offset and opcode (``tag``) they were raised at when
those are known, so that callers can report where an artifact went wrong.
"""

from __future__ import annotations


class CacheError(Exception):
    """Base class for all cache decoding errors."""

    def __init__(
        self, message: str, *, offset: int | None = None, tag: int | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.offset = offset
        self.tag = tag

    def __str__(self) -> str:
        parts = [self.message]
        if self.offset is not None:
            parts.append(f"at offset {self.offset}")
        if self.tag is not None:
            parts.append(f"(tag 0x{self.tag:02x})")
        return " ".join(parts)


# Stream and value decoding


class DecodeError(CacheError):
    """Raised when the byte stream does not follow the format."""


class TruncatedInput(DecodeError, EOFError):
    """A read would run past the end of the buffer."""

    def __init__(self, needed: int, available: int, *, offset: int | None = None) -> None:
        super().__init__(
            f"Truncated input: needed {needed} bytes, {available} available",
            offset=offset,
        )
        self.needed = needed
        self.available = available


class UnknownTypeTag(DecodeError):
    """An opcode outside the closed set of value tags."""


class MissingStreamDelimiter(DecodeError):
    """The two-byte delimiter in front of row data is absent or corrupted."""


class UnknownStreamType(DecodeError):
    """A stream starts with an unrecognised stream type byte."""


class StreamParseFailure(DecodeError):
    """A nested failure while decoding the contents of a stream."""

    def __init__(
        self,
        message: str,
        cause: CacheError,
        *,
        offset: int | None = None,
        tag: int | None = None,
    ) -> None:
        super().__init__(f"{message}: {cause}", offset=offset, tag=tag)
        self.cause = cause


class NestingTooDeep(DecodeError):
    """Containers are nested deeper than the decoder allows."""


# Shared objects


class ShareError(CacheError, LookupError):
    """Base class for share table failures."""


class ShareIndexOutOfRange(ShareError):
    """A shared reference points outside the table."""


class ShareNotFound(ShareError):
    """A shared reference points at a slot that is not fully built."""


class ShareIdOutOfRange(ShareError):
    """The share map names a slot outside the table."""


class ShareCursorOutOfRange(ShareError):
    """More shared values were registered than the stream declared."""


# Rows and descriptors


class RowError(CacheError):
    """Base class for row and descriptor failures."""


class DescriptorNotFound(RowError, LookupError):
    """No descriptor is registered under the requested name."""


class BadDescriptorName(RowError):
    """A descriptor name is empty, non-printable or too long."""


class DescriptorStoreUnavailable(RowError):
    """The backing store of a descriptor store cannot be read."""


class InvalidRowSize(RowError):
    """A row does not have as many fields as its descriptor has columns."""


class InvalidRowFields(RowError):
    """A row or one of its fields has a malformed shape."""


class InvalidRowFieldType(RowError):
    """A field value does not match its column's ADO type."""


class UnknownAdoType(RowError):
    """An ADO type code outside the closed enumeration."""


# Files


class FileAccessError(CacheError):
    """Base class for failures to get at a cache artifact's bytes."""


class CannotOpenFile(FileAccessError):
    """The cache file cannot be opened for reading."""


class CannotOpenBuffer(FileAccessError):
    """The cache file's contents cannot be read into memory."""


class CacheReadError(CacheError):
    """A cache artifact could not be decoded.

    Wraps the underlying error as ``cause`` and repeats its offset and tag.
    """

    def __init__(self, cause: CacheError, *, source: str | None = None) -> None:
        where = f" {source}" if source else ""
        super().__init__(
            f"Cannot read cache artifact{where}: {cause}",
            offset=cause.offset,
            tag=cause.tag,
        )
        self.cause = cause
        self.source = source

    def __str__(self) -> str:
        return self.message


__all__ = [
    "BadDescriptorName",
    "CacheError",
    "CacheReadError",
    "CannotOpenBuffer",
    "CannotOpenFile",
    "DecodeError",
    "DescriptorNotFound",
    "DescriptorStoreUnavailable",
    "FileAccessError",
    "InvalidRowFieldType",
    "InvalidRowFields",
    "InvalidRowSize",
    "MissingStreamDelimiter",
    "NestingTooDeep",
    "RowError",
    "ShareCursorOutOfRange",
    "ShareError",
    "ShareIdOutOfRange",
    "ShareIndexOutOfRange",
    "ShareNotFound",
    "StreamParseFailure",
    "TruncatedInput",
    "UnknownAdoType",
    "UnknownStreamType",
    "UnknownTypeTag",
]
