"""Server configuration.

ServerConfig is a frozen dataclass — immutable after creation, shared
read-only by every in-flight request. Reconfiguration before serving
swaps the whole snapshot; nothing mutates it in place.
"""

from dataclasses import dataclass

from sluice.http.ip import IPResolver

DEFAULT_MAX_MULTIPART_MEMORY = 64 << 20  # 64 MiB


@dataclass(frozen=True, slots=True)
class ServerConfig:
    """Server configuration. Immutable after creation.

    All fields have sensible defaults. Override what you need::

        config = ServerConfig(port=3000, trust_remote_ip_headers=True)
    """

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    workers: int = 0  # 0 = a single worker
    log_level: str = "info"

    # Limits
    max_multipart_memory: int = DEFAULT_MAX_MULTIPART_MEMORY

    # Client IP resolution; headers are only consulted when trusted
    remote_ip_headers: tuple[str, ...] = ("X-Forwarded-For", "Forwarded")
    trust_remote_ip_headers: bool = False

    @property
    def worker_count(self) -> int:
        """Workers to start; ``0`` and negatives mean one."""
        return max(self.workers, 1)

    def ip_resolver(self) -> IPResolver:
        """Build the resolver described by this snapshot."""
        return IPResolver(
            remote_ip_headers=self.remote_ip_headers,
            trust_remote_ip_headers=self.trust_remote_ip_headers,
        )
