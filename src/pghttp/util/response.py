import codecs
import logging
import re
from typing import List, Optional, Union

from .._collections import HeaderEntry
from .util import to_str

log = logging.getLogger(__name__)

_HEADER_LINE_RE = re.compile(r"^(\S+): ?(\S.*)$")


def parse_headers(raw: Union[str, bytes]) -> List[HeaderEntry]:
    """
    Parse raw ``Field: Value`` header text into an ordered list of entries.

    ``raw`` is what the transport's header callback collected: every header
    block of the transaction, redirects included, with ``\\r\\n`` line ends.
    Lines that do not look like a header (status lines, blank separators)
    are skipped.

    >>> parse_headers("HTTP/1.1 200 OK\\r\\nX-Foo: bar\\r\\n\\r\\n")
    [HeaderEntry(field='X-Foo', value='bar')]
    """
    if isinstance(raw, bytes):
        # Header octets are latin-1 on the wire.
        raw = to_str(raw, "iso-8859-1")

    entries = []
    for line in raw.replace("\r", "").split("\n"):
        match = _HEADER_LINE_RE.match(line)
        if match is None:
            continue
        entries.append(HeaderEntry(match.group(1), match.group(2)))
    return entries


def get_charset(content_type: Optional[str]) -> Optional[str]:
    """
    Find the ``charset=`` parameter of a content type and resolve it.

    Returns the Python codec name for the charset, or ``None`` when there is
    no charset parameter or the charset is unknown.

    >>> get_charset("text/html; Charset=ISO-8859-1")
    'iso8859-1'
    """
    if not content_type:
        return None

    for param in content_type.split(";")[1:]:
        name, sep, value = param.partition("=")
        if not sep or name.strip().lower() != "charset":
            continue
        value = value.strip().strip("\"'")
        if not value:
            return None
        try:
            return codecs.lookup(value).name
        except LookupError:
            log.warning("Ignoring unknown charset %r in %r", value, content_type)
            return None
    return None
