import ipaddress
import re
from urllib.parse import quote, urlsplit, urlunsplit

from audicle.services.exceptions import InvalidUrl

ALLOWED_SCHEMES = ("http", "https")
DEFAULT_SCHEME = "https"

_SCHEME_PREFIX = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*://")
_HOST_LABEL = re.compile(r"^(?!-)[a-zA-Z0-9-]{1,63}(?<!-)$")
# RFC 3986 unreserved, reserved and percent characters.
_URL_CHARS = re.compile(r"^[A-Za-z0-9\-._~:/?#\[\]@!$&'()*+,;=%]+$")
_NON_ASCII = re.compile(r"[^\x00-\x7f]+")


def _is_valid_hostname(hostname: str) -> bool:
    if hostname == "localhost":
        return True
    try:
        ipaddress.ip_address(hostname)
        return True
    except ValueError:
        pass
    if len(hostname) > 253 or "." not in hostname:
        return False
    labels = hostname.rstrip(".").split(".")
    if not all(_HOST_LABEL.match(label) for label in labels):
        return False
    # A purely numeric TLD is a malformed IPv4 address, not a domain.
    return not labels[-1].isdigit()


def _percent_encode_non_ascii(component: str) -> str:
    return _NON_ASCII.sub(lambda match: quote(match.group(), safe=""), component)


def _encode_international(candidate: str, raw: str) -> str:
    """Punycode a Unicode host and percent-encode Unicode path, query and fragment.

    ASCII characters are left alone so that spaces and other illegal
    characters still fail validation.
    """
    if candidate.isascii():
        return candidate
    try:
        parts = urlsplit(candidate)
    except ValueError as exc:
        raise InvalidUrl(url=raw) from exc

    userinfo, at, hostport = parts.netloc.rpartition("@")
    if hostport.startswith("["):
        host, port_suffix = hostport, ""
    else:
        host, colon, port = hostport.partition(":")
        port_suffix = f"{colon}{port}"
    try:
        ascii_host = host.encode("idna").decode("ascii")
    except UnicodeError as exc:
        raise InvalidUrl(url=raw) from exc

    netloc = f"{_percent_encode_non_ascii(userinfo)}{at}{ascii_host}{port_suffix}"
    return urlunsplit(
        (
            parts.scheme,
            netloc,
            _percent_encode_non_ascii(parts.path),
            _percent_encode_non_ascii(parts.query),
            _percent_encode_non_ascii(parts.fragment),
        )
    )


def normalize_url(raw: str) -> str:
    """Coerce user input into an absolute http(s) URL or raise ``InvalidUrl``.

    Internationalised input is accepted the way a browser address bar
    accepts it: the host becomes punycode and the rest is percent-encoded.
    """
    candidate = (raw or "").strip()
    if not candidate:
        raise InvalidUrl()

    if not _SCHEME_PREFIX.match(candidate):
        candidate = f"{DEFAULT_SCHEME}://{candidate}"

    candidate = _encode_international(candidate, raw)
    if not _URL_CHARS.match(candidate):
        raise InvalidUrl(url=raw)

    try:
        parts = urlsplit(candidate)
        hostname = parts.hostname
        # Accessing .port validates its range and raises ValueError otherwise.
        parts.port
    except ValueError as exc:
        raise InvalidUrl(url=raw) from exc

    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise InvalidUrl(url=raw)
    if not hostname or not _is_valid_hostname(hostname):
        raise InvalidUrl(url=raw)

    return candidate
