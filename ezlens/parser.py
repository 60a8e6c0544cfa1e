"""Grammar-driven decoder for proxy access-log lines.

Line layout (positional, whitespace- and quote-delimited):

  remote_addr identd user_or_session [DD/Mon/YYYY:HH:MM:SS +ZZZZ]
  "METHOD URL HTTP/x" status bytes "country" "user_agent"

parse_line() returns either a Record or a ParseFailure tagged with the
reason. Malformed input is reported as a value, never raised.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from ezlens.models import FailureReason, ParseFailure, Record

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_WHITESPACE = " \t"

_TIMESTAMP_RE = re.compile(
    r"^(?P<day>\d{1,2})/(?P<month>[A-Za-z]{3})/(?P<year>\d{4})"
    r":(?P<hour>\d{2}):(?P<minute>\d{2}):(?P<second>\d{2})"
    r" (?P<sign>[+-])(?P<off_h>\d{2})(?P<off_m>\d{2})$"
)

# Locale-independent month table (strptime's %b follows the process locale).
_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*$")
_HOST_RE = re.compile(r"^[A-Za-z0-9._\-]+$")
_IPV6_HOST_RE = re.compile(r"^\[[0-9A-Fa-f:.]+\]$")

DEFAULT_PORTS = {"http": 80, "https": 443}

_MAX_BYTES = 2**63 - 1


# ---------------------------------------------------------------------------
# URL decomposition
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UrlParts:
    scheme: str = ""
    host: str = ""
    port: int = 0
    path: str = ""
    query: str = ""


EMPTY_URL_PARTS = UrlParts()


def _is_digits(value: str) -> bool:
    return bool(value) and value.isascii() and value.isdigit()


def _split_authority(authority: str, scheme: str) -> tuple[str, int] | None:
    """Split 'host[:port]' into (lower-cased host, port), or None if invalid."""
    if not authority or "@" in authority:
        return None

    if authority.startswith("["):
        close = authority.find("]")
        if close == -1:
            return None
        host, after = authority[: close + 1], authority[close + 1:]
        if not _IPV6_HOST_RE.match(host):
            return None
        if after and not after.startswith(":"):
            return None
        port_str = after[1:]
    else:
        host, _, port_str = authority.partition(":")
        if not _HOST_RE.match(host):
            return None

    if port_str == "":
        port = DEFAULT_PORTS.get(scheme, 0)
    elif _is_digits(port_str) and int(port_str) <= 65535:
        port = int(port_str)
    else:
        return None

    return host.lower(), port


def split_url(url: str) -> UrlParts:
    """Decompose an absolute URL into scheme, host, port, path and query.

    Anything that does not split into a valid host yields EMPTY_URL_PARTS.
    """
    scheme, sep, rest = url.partition("://")
    if not sep or not _SCHEME_RE.match(scheme):
        return EMPTY_URL_PARTS
    scheme = scheme.lower()

    end = len(rest)
    for delimiter in ("/", "?"):
        idx = rest.find(delimiter)
        if idx != -1 and idx < end:
            end = idx
    authority, remainder = rest[:end], rest[end:]

    split = _split_authority(authority, scheme)
    if split is None:
        return EMPTY_URL_PARTS
    host, port = split

    path, _, query = remainder.partition("?")
    return UrlParts(scheme=scheme, host=host, port=port, path=path, query=query)


def compose_url(scheme: str, host: str, port: int, path: str = "", query: str = "") -> str:
    """Rebuild a URL from its parts, omitting the scheme's default port."""
    authority = host
    if port and port != DEFAULT_PORTS.get(scheme):
        authority = f"{host}:{port}"
    url = f"{scheme}://{authority}{path}"
    if query:
        url += f"?{query}"
    return url


# ---------------------------------------------------------------------------
# Field decoders
# ---------------------------------------------------------------------------


def parse_timestamp(value: str) -> datetime | None:
    """Convert '15/Feb/2026:00:00:04 +0000' to an aware UTC datetime."""
    m = _TIMESTAMP_RE.match(value)
    if not m:
        return None
    month = _MONTHS.get(m.group("month").lower())
    if month is None:
        return None

    off_h, off_m = int(m.group("off_h")), int(m.group("off_m"))
    if off_m >= 60:
        return None
    offset = timedelta(hours=off_h, minutes=off_m)
    if m.group("sign") == "-":
        offset = -offset

    try:
        local = datetime(
            int(m.group("year")), month, int(m.group("day")),
            int(m.group("hour")), int(m.group("minute")), int(m.group("second")),
            tzinfo=timezone(offset),
        )
    except ValueError:
        return None
    return local.astimezone(timezone.utc)


def _parse_status(token: str) -> int | None:
    if not _is_digits(token) or len(token) > 3:
        return None
    value = int(token)
    return value if 100 <= value <= 599 else None


def _parse_bytes(token: str) -> int | None:
    if token == "-":
        return 0
    if not _is_digits(token):
        return None
    value = int(token)
    return value if value <= _MAX_BYTES else None


class _Cursor:
    """Left-to-right reader over a single line."""

    def __init__(self, text: str):
        self._text = text
        self._pos = 0

    def skip_ws(self) -> None:
        while self._pos < len(self._text) and self._text[self._pos] in _WHITESPACE:
            self._pos += 1

    def at_end(self) -> bool:
        self.skip_ws()
        return self._pos >= len(self._text)

    def peek(self) -> str:
        self.skip_ws()
        return self._text[self._pos] if self._pos < len(self._text) else ""

    def token(self) -> str | None:
        """Next whitespace-delimited token, or None at end of line."""
        if self.at_end():
            return None
        start = self._pos
        while self._pos < len(self._text) and self._text[self._pos] not in _WHITESPACE:
            self._pos += 1
        return self._text[start:self._pos]

    def enclosed(self, close: str) -> str | None:
        """Consume an opening delimiter and return text up to *close*.

        Returns None when the closing delimiter is missing.
        """
        start = self._pos + 1
        end = self._text.find(close, start)
        if end == -1:
            return None
        self._pos = end + 1
        return self._text[start:end]

    def rest(self) -> str:
        self.skip_ws()
        remainder = self._text[self._pos:]
        self._pos = len(self._text)
        return remainder


def _strip_terminator(line: str) -> str:
    if line.endswith("\r\n"):
        return line[:-2]
    if line.endswith("\n"):
        return line[:-1]
    return line


def _failure(line: str, reason: FailureReason, detail: str) -> ParseFailure:
    return ParseFailure(line=line, reason=reason, detail=detail)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def parse_line(line: str) -> Record | ParseFailure:
    """Decode one access-log line into a Record or a tagged ParseFailure."""
    truncated = FailureReason.TRUNCATED_LINE
    text = _strip_terminator(line)
    if not text.strip():
        return _failure(line, truncated, "empty line")

    cur = _Cursor(text)

    # 1-3. client tokens
    remote_addr = cur.token()
    identd = cur.token()
    user_or_session = cur.token()
    if user_or_session is None:
        return _failure(line, truncated, "missing client tokens")

    # 4. [timestamp]
    if cur.at_end():
        return _failure(line, truncated, "missing timestamp")
    if cur.peek() != "[":
        return _failure(line, FailureReason.BAD_TIMESTAMP, "timestamp is not bracketed")
    stamp = cur.enclosed("]")
    if stamp is None:
        return _failure(line, truncated, "unterminated timestamp")
    ts = parse_timestamp(stamp)
    if ts is None:
        return _failure(line, FailureReason.BAD_TIMESTAMP, f"unparsable timestamp {stamp!r}")

    # 5. "METHOD URL HTTP/x"
    if cur.at_end():
        return _failure(line, truncated, "missing request field")
    if cur.peek() != '"':
        return _failure(line, FailureReason.BAD_REQUEST_FIELD, "request field is not quoted")
    request = cur.enclosed('"')
    if request is None:
        return _failure(line, truncated, "unterminated request field")
    parts = request.split()
    if len(parts) != 3:
        return _failure(
            line, FailureReason.BAD_REQUEST_FIELD,
            f"expected 3 request tokens, got {len(parts)}",
        )
    method, url, http_version = parts
    if not http_version.startswith("HTTP/"):
        return _failure(
            line, FailureReason.BAD_REQUEST_FIELD,
            f"bad protocol token {http_version!r}",
        )

    # 6. status
    status_token = cur.token()
    if status_token is None:
        return _failure(line, truncated, "missing status")
    status = _parse_status(status_token)
    if status is None:
        return _failure(line, FailureReason.BAD_STATUS, f"bad status {status_token!r}")

    # 7. bytes
    bytes_token = cur.token()
    if bytes_token is None:
        return _failure(line, truncated, "missing bytes")
    size = _parse_bytes(bytes_token)
    if size is None:
        return _failure(line, FailureReason.BAD_BYTES, f"bad bytes {bytes_token!r}")

    # 8. "country"
    if cur.peek() != '"':
        return _failure(line, truncated, "missing country field")
    country = cur.enclosed('"')
    if country is None:
        return _failure(line, truncated, "unterminated country field")

    # 9. "user_agent" -- remainder of the line, embedded quotes kept
    remainder = cur.rest().rstrip(_WHITESPACE)
    if len(remainder) < 2 or remainder[0] != '"' or remainder[-1] != '"':
        return _failure(line, truncated, "missing user-agent field")
    user_agent = remainder[1:-1]

    url_parts = split_url(url)

    return Record(
        ts=ts,
        remote_addr=remote_addr,
        identd=identd,
        user_or_session=user_or_session,
        method=method,
        url=url,
        scheme=url_parts.scheme,
        host=url_parts.host,
        port=url_parts.port,
        path=url_parts.path,
        query=url_parts.query,
        http_version=http_version,
        status=status,
        bytes=size,
        country=country.strip(),
        user_agent=user_agent,
        raw=line,
    )
