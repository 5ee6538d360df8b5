"""
Byte buffers filled and drained by the transport while one transaction runs.

:class:`ByteSink` collects response bytes (body or raw header text) in the
order the transport hands them over; :class:`ReadBuffer` serves a request
body to the transport in whatever chunk sizes it asks for.
"""
import io
from typing import Union


class ByteSink:
    """Append-only byte buffer fed chunk by chunk by a transport callback."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def write(self, data: bytes) -> int:
        """Append ``data`` and return the number of bytes taken.

        Matches the write-callback contract: anything other than
        ``len(data)`` tells the transport to stop.
        """
        self._buf += data
        return len(data)

    def getvalue(self) -> bytes:
        return bytes(self._buf)

    def clear(self) -> None:
        del self._buf[:]

    def __len__(self) -> int:
        return len(self._buf)

    def __bool__(self) -> bool:
        return bool(self._buf)


class ReadBuffer(io.RawIOBase):
    """
    Outbound body source for streamed uploads.

    Each :meth:`read` hands back ``min(amt, remaining)`` bytes and moves the
    cursor forward. The cursor never wraps; only :meth:`seek` (used to
    replay the body after a redirect) moves it back.
    """

    def __init__(self, data: Union[bytes, bytearray, memoryview]) -> None:
        super().__init__()
        self._data = bytes(data)
        self._pos = 0

    def __len__(self) -> int:
        return len(self._data)

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def read(self, amt: int = -1) -> bytes:  # type: ignore[override]
        if amt is None or amt < 0:
            amt = self.remaining
        chunk = self._data[self._pos : self._pos + amt]
        self._pos += len(chunk)
        return chunk

    def readinto(self, b: bytearray) -> int:  # type: ignore[override]
        temp = self.read(len(b))
        if len(temp) == 0:
            return 0
        else:
            b[: len(temp)] = temp
            return len(temp)

    def tell(self) -> int:
        return self._pos

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            pos = offset
        elif whence == io.SEEK_CUR:
            pos = self._pos + offset
        elif whence == io.SEEK_END:
            pos = len(self._data) + offset
        else:
            raise ValueError(f"invalid whence ({whence!r})")
        if pos < 0:
            raise ValueError(f"negative seek position {pos}")
        self._pos = min(pos, len(self._data))
        return self._pos
