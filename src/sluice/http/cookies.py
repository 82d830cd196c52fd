"""Cookie parsing and SetCookie serialization.

Consolidates the read side (parse_cookies, used by Request) and the
write side (SetCookie, used by Response) in one module.
"""

import ipaddress
import re
from dataclasses import dataclass

# RFC 7230 token
_NAME_RE = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")
_DOMAIN_LABEL_RE = re.compile(r"[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?")
_SAMESITE = {"strict": "Strict", "lax": "Lax", "none": "None"}


def _valid_value_char(ch: str) -> bool:
    return 0x20 <= ord(ch) < 0x7F and ch not in '";\\'


def sanitize_cookie_value(value: str) -> str:
    """Drop bytes a cookie value may not carry; quote if it has a space or comma."""
    cleaned = "".join(ch for ch in value if _valid_value_char(ch))
    if " " in cleaned or "," in cleaned:
        return f'"{cleaned}"'
    return cleaned


def sanitize_cookie_path(path: str) -> str:
    """Drop ``;`` and control bytes from a cookie path."""
    return "".join(ch for ch in path if 0x20 <= ord(ch) < 0x7F and ch != ";")


def valid_cookie_name(name: str) -> bool:
    return bool(_NAME_RE.fullmatch(name))


def valid_cookie_domain(domain: str) -> bool:
    """A host name (optionally dot-prefixed) or an IPv4 address."""
    try:
        return isinstance(ipaddress.ip_address(domain), ipaddress.IPv4Address)
    except ValueError:
        pass
    domain = domain.removeprefix(".")
    if not domain or len(domain) > 255:
        return False
    return all(_DOMAIN_LABEL_RE.fullmatch(label) for label in domain.split("."))


def parse_cookies(header: str) -> dict[str, str]:
    """Parse a ``Cookie`` header value into a name-value dict.

    Returns an empty dict for empty or missing headers. The first
    occurrence of a name wins.
    """
    if not header:
        return {}
    cookies: dict[str, str] = {}
    for pair in header.split(";"):
        pair = pair.strip()
        if "=" in pair:
            key, _, value = pair.partition("=")
            key = key.strip()
            value = value.strip()
            if len(value) > 1 and value.startswith('"') and value.endswith('"'):
                value = value[1:-1]
            cookies.setdefault(key, value)
    return cookies


@dataclass(frozen=True, slots=True)
class SetCookie:
    """A ``Set-Cookie`` directive attached to a Response.

    ``max_age=None`` omits the attribute (session cookie); ``0`` expires
    the cookie immediately.
    """

    name: str
    value: str
    max_age: int | None = None
    path: str = "/"
    domain: str | None = None
    secure: bool = False
    httponly: bool = False
    samesite: str | None = None

    def to_header_value(self) -> str:
        """Serialize to a ``Set-Cookie`` header value string.

        Returns ``""`` when the name is not a valid token; the cookie is
        then not sent at all. The value and path are sanitized, and an
        invalid domain or SameSite mode is left out.
        """
        if not valid_cookie_name(self.name):
            return ""
        parts = [f"{self.name}={sanitize_cookie_value(self.value)}"]
        path = sanitize_cookie_path(self.path)
        if path:
            parts.append(f"Path={path}")
        if self.domain and valid_cookie_domain(self.domain):
            parts.append(f"Domain={self.domain.removeprefix('.')}")
        if self.max_age is not None:
            parts.append(f"Max-Age={max(self.max_age, 0)}")
        if self.httponly:
            parts.append("HttpOnly")
        if self.secure:
            parts.append("Secure")
        samesite = _SAMESITE.get((self.samesite or "").lower())
        if samesite:
            parts.append(f"SameSite={samesite}")
        return "; ".join(parts)
