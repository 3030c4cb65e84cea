"""Server-side encryption descriptors.

Each descriptor knows how to render itself as botocore request parameters.
SSE-S3 and SSE-KMS only affect uploads; SSE-C keys must also accompany
every read of the object.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Union

from s3storage.config import SSE_C, SSE_KMS, SSE_S3
from s3storage.errors import EncryptionConfigError, InvalidOverrideError

if TYPE_CHECKING:
    from s3storage.config import S3Config

logger = logging.getLogger(__name__)

SSEC_KEY_SIZE = 32


@dataclass(frozen=True)
class SSES3:
    """Keys managed by the object store (SSE-S3)."""

    def put_params(self) -> dict[str, Any]:
        return {"ServerSideEncryption": "AES256"}

    def get_params(self) -> dict[str, Any]:
        return {}


@dataclass(frozen=True)
class SSEKMS:
    """Keys managed by a key management service (SSE-KMS).

    Attributes:
        key_id: The KMS key identifier.
        context: Encryption context pairs. Always a mapping; an absent
            context is sent as ``{}`` because some servers reject a
            serialized null.
    """

    key_id: str
    context: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.key_id:
            raise EncryptionConfigError("SSE-KMS requires a non-empty key id")
        if self.context is None:
            object.__setattr__(self, "context", {})

    def encoded_context(self) -> str:
        """Base64 of the JSON-encoded context, as S3 expects it."""
        payload = json.dumps(self.context, sort_keys=True, separators=(",", ":"))
        return base64.b64encode(payload.encode("utf-8")).decode("ascii")

    def put_params(self) -> dict[str, Any]:
        return {
            "ServerSideEncryption": "aws:kms",
            "SSEKMSKeyId": self.key_id,
            "SSEKMSEncryptionContext": self.encoded_context(),
        }

    def get_params(self) -> dict[str, Any]:
        return {}


@dataclass(frozen=True)
class SSEC:
    """Customer-provided 256-bit key (SSE-C).

    botocore base64-encodes the key and adds its MD5 header itself.
    """

    key: bytes = field(repr=False)

    def __post_init__(self) -> None:
        if len(self.key) != SSEC_KEY_SIZE:
            raise EncryptionConfigError(
                f"invalid SSE-C key: must be {SSEC_KEY_SIZE} bytes, got {len(self.key)}"
            )

    def put_params(self) -> dict[str, Any]:
        return self.get_params()

    def get_params(self) -> dict[str, Any]:
        return {"SSECustomerAlgorithm": "AES256", "SSECustomerKey": self.key}


ServerSideEncryption = Union[SSES3, SSEKMS, SSEC]

_DESCRIPTORS = (SSES3, SSEKMS, SSEC)


def build_sse(config: S3Config) -> ServerSideEncryption | None:
    """Derive the default encryption descriptor from the configuration.

    The SSE-C key file is read here, once.

    Returns:
        The descriptor, or None when ``sse_config.type`` is empty.

    Raises:
        EncryptionConfigError: For unsupported types, missing parameters or
            an unreadable key file.
    """
    sse = config.sse_config
    if not sse.type:
        return None

    if sse.type == SSE_KMS:
        if not sse.kms_key_id:
            raise EncryptionConfigError(
                "kms_key_id must be set if sse_config.type is set to 'SSE-KMS'"
            )
        return SSEKMS(key_id=sse.kms_key_id, context=dict(sse.kms_encryption_context or {}))

    if sse.type == SSE_C:
        if not sse.encryption_key:
            raise EncryptionConfigError(
                "encryption_key must be set if sse_config.type is set to 'SSE-C'"
            )
        try:
            key = Path(sse.encryption_key).read_bytes()
        except OSError as exc:
            raise EncryptionConfigError(
                f"read SSE-C encryption key {sse.encryption_key}: {exc}"
            ) from exc
        logger.debug("Loaded SSE-C key from %s", sse.encryption_key)
        return SSEC(key=key)

    if sse.type == SSE_S3:
        return SSES3()

    raise EncryptionConfigError(
        f"Unsupported type {sse.type!r} was provided. "
        f"Supported types are {SSE_S3}, {SSE_KMS}, {SSE_C}"
    )


def resolve_sse(
    default: ServerSideEncryption | None,
    override: Any = None,
) -> ServerSideEncryption | None:
    """Pick the descriptor for one call.

    Args:
        default: The client's descriptor.
        override: Optional per-call descriptor; wins when given.

    Raises:
        InvalidOverrideError: If ``override`` is not a descriptor.
    """
    if override is None:
        return default
    if not isinstance(override, _DESCRIPTORS):
        raise InvalidOverrideError(override)
    return override
