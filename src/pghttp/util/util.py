from typing import Optional, Union

# Bodies and header text are handled in UTF-8 once they leave the transport.
CANONICAL_ENCODING = "utf-8"


def to_bytes(
    x: Union[str, bytes], encoding: Optional[str] = None, errors: Optional[str] = None
) -> bytes:
    if isinstance(x, bytes):
        return x
    elif not isinstance(x, str):
        raise TypeError(f"not expecting type {type(x).__name__}")
    if encoding or errors:
        return x.encode(encoding or "utf-8", errors=errors or "strict")
    return x.encode()


def to_str(
    x: Union[str, bytes], encoding: Optional[str] = None, errors: Optional[str] = None
) -> str:
    if isinstance(x, str):
        return x
    elif not isinstance(x, bytes):
        raise TypeError(f"not expecting type {type(x).__name__}")
    if encoding or errors:
        return x.decode(encoding or "utf-8", errors=errors or "strict")
    return x.decode()


def bytes_to_text(data: bytes) -> str:
    """
    Reinterpret a binary blob as text without transforming it.

    Bytes that are not valid in the canonical encoding survive as
    surrogate escapes, so :func:`text_to_bytes` gives back the exact input.
    """
    return data.decode(CANONICAL_ENCODING, "surrogateescape")


def text_to_bytes(text: str) -> bytes:
    """Inverse of :func:`bytes_to_text`."""
    return text.encode(CANONICAL_ENCODING, "surrogateescape")
