"""Masking of secret values in child process output.

Output from a child arrives in arbitrary chunks, and a secret can be split
across two of them. The masker therefore never treats the end of a chunk as
the end of the text: whenever the tail of what it has seen could still grow
into a secret, those bytes are held back until more data arrives.

Matching is byte-exact and leftmost-longest. Secrets are tried longest
first at each position, so with secrets ``abc`` and ``abcdef`` the text
``abcdef`` becomes one placeholder and ``abcxyz`` masks just ``abc``.
Fragments of a secret that are not configured secrets themselves are left
alone.

Example:
    >>> masker = StreamMasker(["abcdef"], placeholder="***")
    >>> masker.feed(b"xx ab")
    b'xx '
    >>> masker.feed(b"cdef yy")
    b'*** yy'
    >>> masker.flush()
    b''
"""

import enum
import re
from typing import Iterable, Iterator

from .config import DEFAULT_PLACEHOLDER


class MaskState(enum.Enum):
    SCANNING = "scanning"
    BUFFERING_PARTIAL_MATCH = "buffering_partial_match"


def _to_bytes(value) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


class StreamMasker:
    """
    Incremental masker for a single output stream.

    Call :meth:`feed` with each chunk as it arrives and write out whatever it
    returns. When the stream ends normally call :meth:`flush`; on teardown
    (the child was killed, the parent interrupted) call :meth:`discard`
    instead, which drops the held back bytes without emitting them.

    Attributes:
        secrets: Configured secret values as bytes, longest first
        placeholder: Bytes written in place of each secret occurrence
        max_secret_len: Length of the longest secret
    """

    def __init__(self, secrets: Iterable, placeholder=DEFAULT_PLACEHOLDER):
        # Empty values would match everywhere
        values = {_to_bytes(secret) for secret in secrets if secret}
        self.secrets = sorted(values, key=lambda s: (-len(s), s))
        self.placeholder = _to_bytes(placeholder)
        self.max_secret_len = max((len(s) for s in self.secrets), default=0)

        # Alternation takes the first alternative that matches, and the
        # secrets are sorted longest first.
        self._pattern = None
        if self.secrets:
            self._pattern = re.compile(b"|".join(re.escape(s) for s in self.secrets))

        self._pending = b""
        self._closed = False

    @property
    def state(self) -> MaskState:
        if self._pending:
            return MaskState.BUFFERING_PARTIAL_MATCH
        return MaskState.SCANNING

    @property
    def pending(self) -> int:
        """Number of bytes currently held back."""
        return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def feed(self, chunk) -> bytes:
        """Add a chunk and return the masked bytes that are safe to emit now."""
        if self._closed:
            raise ValueError("Masker is closed")
        return self._scan(self._pending + _to_bytes(chunk), final=False)

    def flush(self) -> bytes:
        """End of stream: mask and return whatever is still held back."""
        if self._closed:
            return b""
        out = self._scan(self._pending, final=True)
        self._closed = True
        return out

    def discard(self) -> None:
        """Drop held back bytes without emitting them."""
        self._pending = b""
        self._closed = True

    def _partial_start(self, data: bytes) -> int:
        """
        Earliest offset whose suffix is a proper prefix of some secret.

        Returns ``len(data)`` when no secret can be in progress at the end.
        Only the last ``max_secret_len - 1`` offsets can qualify.
        """
        size = len(data)
        for start in range(max(0, size - self.max_secret_len + 1), size):
            tail = data[start:]
            for secret in self.secrets:
                if len(secret) > len(tail) and secret.startswith(tail):
                    return start
        return size

    def _scan(self, data: bytes, final: bool) -> bytes:
        # Matches starting before the cut are settled: no longer secret can
        # still be completing there. Everything from the cut on waits.
        cut = len(data) if final else self._partial_start(data)
        out = []
        pos = 0
        if self._pattern is not None:
            for match in self._pattern.finditer(data):
                if match.start() >= cut:
                    break
                out.append(data[pos:match.start()])
                out.append(self.placeholder)
                pos = match.end()

        # A settled match may run past the cut
        keep = max(pos, cut)
        out.append(data[pos:keep])
        self._pending = data[keep:]
        return b"".join(out)


def mask_stream(chunks: Iterable, secrets: Iterable,
                placeholder=DEFAULT_PLACEHOLDER) -> Iterator[bytes]:
    """
    Lazily mask an iterable of chunks, preserving order.

    If iteration stops early (the consumer closes the generator or the
    source raises), held back bytes are discarded rather than emitted.
    """
    masker = StreamMasker(secrets, placeholder)
    completed = False
    try:
        for chunk in chunks:
            out = masker.feed(chunk)
            if out:
                yield out
        completed = True
    finally:
        if not completed:
            masker.discard()

    tail = masker.flush()
    if tail:
        yield tail


def mask(data, secrets: Iterable, placeholder=DEFAULT_PLACEHOLDER) -> bytes:
    """Mask a complete buffer in one go."""
    masker = StreamMasker(secrets, placeholder)
    return masker.feed(data) + masker.flush()
