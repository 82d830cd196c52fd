"""ASGI type aliases (ASGI 3.0)."""

from collections.abc import Awaitable, Callable, MutableMapping
from typing import Any, TypeAlias

Scope: TypeAlias = MutableMapping[str, Any]
Message: TypeAlias = MutableMapping[str, Any]
Receive: TypeAlias = Callable[[], Awaitable[Message]]
Send: TypeAlias = Callable[[Message], Awaitable[None]]


def format_remote_addr(client: tuple[str, int] | None) -> str:
    """Render an ASGI ``client`` pair as a ``host:port`` peer address.

    IPv6 hosts are bracketed. A missing client yields ``""``.
    """
    if not client:
        return ""
    host, port = client[0], client[1]
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"
