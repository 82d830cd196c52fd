"""Client IP resolution behind trusted proxies.

The resolver turns a request into an ordered address chain:

- index 0 is the most-forwarded address (the claimed client),
- the last index is the nearest hop (the socket peer, or the last
  trusted header entry when it already names the peer).

Headers are consulted only when trust is explicitly enabled. Nothing in
here raises: a malformed peer address becomes ``""`` and malformed
header entries are dropped.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sluice.http.request import Request


def split_host_port(address: str) -> tuple[str, str]:
    """Split ``host:port`` or ``[host]:port`` into its parts.

    The port is mandatory. Raises ``ValueError`` for anything else
    (missing port, unbalanced brackets, too many colons).
    """
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            msg = f"missing ']' in address {address!r}"
            raise ValueError(msg)
        host = address[1:end]
        rest = address[end + 1 :]
        if not rest.startswith(":"):
            msg = f"missing port in address {address!r}"
            raise ValueError(msg)
        return host, rest[1:]

    host, sep, port = address.rpartition(":")
    if not sep:
        msg = f"missing port in address {address!r}"
        raise ValueError(msg)
    if ":" in host:
        msg = f"too many colons in address {address!r}"
        raise ValueError(msg)
    return host, port


def parse_ip(value: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    """Parse an IP literal, or return ``None`` if it is not one."""
    try:
        return ipaddress.ip_address(value)
    except ValueError:
        return None


def peer_ip(remote_addr: str) -> str:
    """Host part of a raw ``host:port`` peer address, normalized.

    Returns ``""`` when the address cannot be split or the host is not
    an IP literal.
    """
    try:
        host, _ = split_host_port(remote_addr.strip())
    except ValueError:
        return ""
    ip = parse_ip(host)
    if ip is None:
        return ""
    # IPv4-mapped IPv6 peers (dual-stack listeners) render as dotted IPv4
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return str(ip.ipv4_mapped)
    return str(ip)


def _forwarded_for(value: str) -> list[str]:
    """Extract the ``for=`` nodes of an RFC 7239 ``Forwarded`` header."""
    nodes: list[str] = []
    for element in value.split(","):
        for pair in element.split(";"):
            name, sep, node = pair.strip().partition("=")
            if not sep or name.strip().lower() != "for":
                continue
            node = node.strip().strip('"')
            if node.startswith("["):
                # "[2001:db8::1]:4711" or "[2001:db8::1]"
                node = node[1 : node.find("]")] if "]" in node else ""
            elif node.count(":") == 1:
                node = node.partition(":")[0]
            nodes.append(node)
    return nodes


def _header_addresses(header_name: str, value: str) -> list[str]:
    """Candidate addresses carried by one trusted header, in order."""
    name = header_name.lower()
    if name == "x-forwarded-for":
        candidates = [raw.strip() for raw in value.split(",")]
    elif name == "forwarded":
        candidates = _forwarded_for(value)
    elif name == "x-real-ip":
        candidates = [value.strip()]
    else:
        return []
    return [ip for ip in candidates if parse_ip(ip) is not None]


@dataclass(frozen=True, slots=True)
class IPResolver:
    """Resolves the ordered client/proxy address chain of a request.

    The resolver holds no cache; callers memoize per request (see
    ``Context.client_ip``).
    """

    remote_ip_headers: tuple[str, ...] = ()
    trust_remote_ip_headers: bool = False

    def resolve(self, request: Request) -> list[str]:
        """Return the address chain for *request*. Never empty."""
        remote_ip = peer_ip(request.remote_addr)
        if not self.trust_remote_ip_headers or not self.remote_ip_headers:
            return [remote_ip]

        ips: list[str] = []
        for header_name in self.remote_ip_headers:
            header_value = request.headers.get(header_name)
            if not header_value:
                continue
            ips.extend(_header_addresses(header_name, header_value))

        if not ips or ips[-1] != remote_ip:
            ips.append(remote_ip)
        return ips
