from __future__ import annotations

import re
from dataclasses import dataclass, replace

DEFAULT_CHUNK_SIZE = 1024 * 1024

_RANGE_PATTERN = re.compile(r"bytes=(\d*)-(\d*)")


@dataclass(frozen=True)
class ByteRange:
    """Inclusive byte interval ``[start, end]`` of an object of ``total`` bytes.

    An empty object is represented by ``start == end == 0`` with
    ``total == 0``; its ``length`` is zero and it is never partial.
    """

    start: int
    end: int
    total: int

    def __post_init__(self) -> None:
        if self.total == 0:
            if self.start != 0 or self.end != 0:
                msg = "empty object must resolve to start == end == 0"
                raise ValueError(msg)
            return
        if not 0 <= self.start <= self.end <= self.total - 1:
            msg = f"invalid byte range {self.start}-{self.end}/{self.total}"
            raise ValueError(msg)

    @property
    def length(self) -> int:
        if self.total == 0:
            return 0
        return self.end - self.start + 1

    @property
    def is_partial(self) -> bool:
        if self.total == 0:
            return False
        return self.start > 0 or self.end < self.total - 1

    @property
    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.total}"


@dataclass(frozen=True)
class ResolvedRequest:
    """Outcome of resolving one request against an object size.

    ``has_range_header`` and ``byte_range.is_partial`` are tracked
    separately: a request without a Range header can still be served a
    bounded first chunk, and an explicit Range can cover the whole object.
    """

    byte_range: ByteRange
    has_range_header: bool
    chunked: bool = False


def full_range(total: int) -> ByteRange:
    if total <= 0:
        return ByteRange(0, 0, 0)
    return ByteRange(0, total - 1, total)


def _parse(range_header: str | None) -> tuple[int | None, int | None] | None:
    if range_header is None:
        return None
    match = _RANGE_PATTERN.fullmatch(range_header.strip())
    if match is None:
        return None
    start_str, end_str = match.groups()
    try:
        start = int(start_str) if start_str else None
        end = int(end_str) if end_str else None
    except ValueError:
        return None
    return start, end


def is_open_ended(range_header: str | None) -> bool:
    """Return True for a well-formed header without an end bound (``bytes=N-``)."""
    parsed = _parse(range_header)
    return parsed is not None and parsed[1] is None


def resolve(range_header: str | None, total: int) -> ByteRange:
    """Translate a Range header into a size-clamped interval.

    Never raises: an absent or malformed header, or one whose start lies
    beyond the end of the object, resolves to the full object.
    """
    parsed = _parse(range_header)
    if parsed is None or total <= 0:
        return full_range(total)

    start, end = parsed
    start = 0 if start is None else start
    if end is None or end >= total:
        end = total - 1
    if start > end:
        return full_range(total)
    return ByteRange(start, end, total)


def bound_chunk(byte_range: ByteRange, chunk_size: int) -> ByteRange:
    """Cap ``byte_range`` to at most ``chunk_size`` bytes from its start."""
    if byte_range.total == 0:
        return byte_range
    end = min(byte_range.start + chunk_size - 1, byte_range.total - 1)
    return replace(byte_range, end=end)


def resolve_request(
    range_header: str | None,
    total: int,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    bound_unranged: bool = False,
) -> ResolvedRequest:
    """Resolve a request and apply the open-ended chunk policy.

    Args:
        range_header: Literal Range header value, or None when absent.
        total: Object size in bytes.
        chunk_size: Upper bound for open-ended reads.
        bound_unranged: Also bound requests that carry no Range header.

    Returns:
        The resolved request.
    """
    if chunk_size < 1:
        msg = "chunk_size must be positive"
        raise ValueError(msg)

    byte_range = resolve(range_header, total)
    has_header = range_header is not None
    chunked = is_open_ended(range_header) or (bound_unranged and not has_header)
    if chunked:
        byte_range = bound_chunk(byte_range, chunk_size)
    return ResolvedRequest(
        byte_range=byte_range, has_range_header=has_header, chunked=chunked
    )


def response_headers(byte_range: ByteRange) -> dict[str, str]:
    headers = {
        "Accept-Ranges": "bytes",
        "Content-Length": str(byte_range.length),
    }
    if byte_range.is_partial:
        headers["Content-Range"] = byte_range.content_range
    return headers


def status_code(byte_range: ByteRange) -> int:
    # Status always agrees with Content-Range presence.
    return 206 if byte_range.is_partial else 200
