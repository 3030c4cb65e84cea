"""Configuration loading and Pydantic models for s3storage."""

import re
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from s3storage.errors import ConfigError
from s3storage.transport import Transport

# SSE type names accepted in sse_config.type.
SSE_S3 = "SSE-S3"
SSE_KMS = "SSE-KMS"
SSE_C = "SSE-C"

LIST_OBJECTS_VERSIONS = ("", "v1", "v2")

_DEFAULT_PART_SIZE = 64 * 1024 * 1024

# Go-style duration units, e.g. "90s", "1m30s", "500ms".
_DURATION_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Any) -> Any:
    """Convert a Go-style duration string into a timedelta.

    Numbers and timedelta values pass through for Pydantic to handle.

    Raises:
        ValueError: If the string is not a valid duration.
    """
    if not isinstance(value, str):
        return value
    text = value.strip()
    if text in ("0", ""):
        return timedelta(0)
    pos = 0
    seconds = 0.0
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text) or pos == 0:
        raise ValueError(f"invalid duration {value!r}")
    return timedelta(seconds=seconds)


class _Strict(BaseModel):
    """Shared settings: immutable and unknown fields rejected."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class HTTPConfig(_Strict):
    """HTTP transport tuning for the S3 client."""

    idle_conn_timeout: timedelta = timedelta(seconds=90)
    response_header_timeout: timedelta = timedelta(minutes=2)
    insecure_skip_verify: bool = False
    tls_handshake_timeout: timedelta = timedelta(seconds=10)
    expect_continue_timeout: timedelta = timedelta(seconds=1)
    max_idle_conns: int = Field(default=100, ge=0)
    max_idle_conns_per_host: int = Field(default=100, ge=0)
    max_conns_per_host: int = Field(default=0, ge=0)
    # Pre-built s3storage.transport.Transport; never read from YAML.
    transport: Any = Field(default=None, exclude=True)

    @field_validator(
        "idle_conn_timeout",
        "response_header_timeout",
        "tls_handshake_timeout",
        "expect_continue_timeout",
        mode="before",
    )
    @classmethod
    def _duration(cls, value: Any) -> Any:
        return parse_duration(value)

    @field_validator("transport")
    @classmethod
    def _transport(cls, value: Any) -> Any:
        if value is not None and not isinstance(value, Transport):
            raise ValueError("transport must be an s3storage.transport.Transport")
        return value


class TraceConfig(_Strict):
    """Request tracing toggle (carried through, not acted upon)."""

    enable: bool = False


class SSEConfig(_Strict):
    """Server-side encryption settings."""

    type: str = ""
    kms_key_id: str = ""
    kms_encryption_context: dict[str, str] = Field(default_factory=dict)
    encryption_key: str = ""

    @field_validator("kms_encryption_context", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class S3Config(_Strict):
    """Top-level s3storage configuration."""

    bucket: str = ""
    endpoint: str = ""
    region: str = ""
    aws_sdk_auth: bool = False
    access_key: str = ""
    insecure: bool = False
    signature_version2: bool = False
    secret_key: str = Field(default="", repr=False)
    put_user_metadata: dict[str, str] = Field(default_factory=dict)
    http_config: HTTPConfig = Field(default_factory=HTTPConfig)
    trace: TraceConfig = Field(default_factory=TraceConfig)
    list_objects_version: str = ""
    # Multipart threshold hint; uploads here are always single-shot.
    part_size: int = Field(default=_DEFAULT_PART_SIZE, ge=0)
    sse_config: SSEConfig = Field(default_factory=SSEConfig)
    sts_endpoint: str = ""

    @field_validator("put_user_metadata", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value


def default_config() -> S3Config:
    """Return a fresh configuration populated with defaults."""
    return S3Config()


def parse_config(data: bytes | str) -> S3Config:
    """Parse YAML configuration onto the defaults.

    Unknown keys at any level are rejected so typos fail loudly.

    Args:
        data: Raw YAML document.

    Returns:
        The parsed S3Config (not yet validated, see ``validate``).

    Raises:
        ConfigError: If the YAML is malformed or does not fit the model.
    """
    try:
        raw = yaml.safe_load(data)
    except yaml.YAMLError as exc:
        raise ConfigError(f"parse s3 config: {exc}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(
            f"parse s3 config: expected a mapping, got {type(raw).__name__}"
        )

    http = raw.get("http_config")
    if isinstance(http, dict) and "transport" in http:
        raise ConfigError("parse s3 config: http_config.transport cannot be set from YAML")

    try:
        return S3Config.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"parse s3 config: {exc}") from exc


def load_config(path: Path) -> S3Config:
    """Load an S3Config from a YAML file.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ConfigError: If the file content is invalid.
    """
    with open(path, "rb") as fh:
        return parse_config(fh.read())


def validate(config: S3Config) -> None:
    """Check that the configuration options are consistent.

    Only the first violation is reported.

    Raises:
        ConfigError: Describing the violated rule.
    """
    if not config.endpoint:
        raise ConfigError("no s3 endpoint in config file")
    if config.aws_sdk_auth and config.access_key:
        raise ConfigError(
            "aws_sdk_auth and access_key are mutually exclusive configurations"
        )
    if not config.access_key and config.secret_key:
        raise ConfigError(
            "no s3 access_key specified while secret_key is present in config file; "
            "either both should be present in config or envvars/IAM should be used."
        )
    if config.access_key and not config.secret_key:
        raise ConfigError(
            "no s3 secret_key specified while access_key is present in config file; "
            "either both should be present in config or envvars/IAM should be used."
        )

    sse = config.sse_config
    if sse.type == SSE_C and not sse.encryption_key:
        raise ConfigError(
            "encryption_key must be set if sse_config.type is set to 'SSE-C'"
        )
    if sse.type == SSE_KMS and not sse.kms_key_id:
        raise ConfigError(
            "kms_key_id must be set if sse_config.type is set to 'SSE-KMS'"
        )

    if config.list_objects_version not in LIST_OBJECTS_VERSIONS:
        raise ConfigError(
            f"Unsupported list objects version {config.list_objects_version!r} "
            "was provided. Supported values are v1, v2"
        )
