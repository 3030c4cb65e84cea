"""HTTP transport settings for the botocore S3 client.

botocore owns the connection pool (urllib3 underneath); this module only
translates ``http_config`` into a ``botocore.config.Config``. Response
bodies are handed back exactly as received: botocore never decodes a
``Content-Encoding`` such as gzip, so callers see the stored bytes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from botocore.config import Config as BotoConfig

if TYPE_CHECKING:
    from s3storage.config import S3Config

# TCP connect budget before the TLS handshake starts.
DIAL_TIMEOUT = 30.0


@dataclass(frozen=True)
class Transport:
    """A ready-to-use transport: botocore client config plus TLS verification.

    Attributes:
        config: Timeouts, pool size and retry policy for the client.
        verify: False to skip TLS certificate verification.
    """

    config: BotoConfig
    verify: bool = True


def pool_size(config: S3Config) -> int:
    """Pick the connection pool size from the per-host and global limits."""
    http = config.http_config
    for limit in (http.max_conns_per_host, http.max_idle_conns_per_host, http.max_idle_conns):
        if limit > 0:
            return limit
    return 10


def build_transport(config: S3Config) -> Transport:
    """Build the transport for a client, or return the injected one verbatim.

    ``idle_conn_timeout`` and ``expect_continue_timeout`` have no botocore
    counterpart and are carried in the config only.

    Args:
        config: The client configuration.

    Returns:
        The Transport to create the botocore client with.
    """
    http = config.http_config
    if http.transport is not None:
        return http.transport

    boto_config = BotoConfig(
        connect_timeout=DIAL_TIMEOUT + http.tls_handshake_timeout.total_seconds(),
        read_timeout=http.response_header_timeout.total_seconds(),
        max_pool_connections=pool_size(config),
        tcp_keepalive=True,
        # Errors go straight to the caller; no SDK-level retries.
        retries={"total_max_attempts": 1, "mode": "standard"},
        # Many S3-compatible servers reject the default CRC checksum headers.
        request_checksum_calculation="when_required",
        response_checksum_validation="when_required",
    )
    return Transport(config=boto_config, verify=not http.insecure_skip_verify)
