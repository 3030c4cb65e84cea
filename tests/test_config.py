"""Tests for s3storage configuration parsing and validation."""

from datetime import timedelta
from pathlib import Path

import pytest
from botocore.config import Config as BotoConfig
from pydantic import ValidationError

from s3storage.config import (
    S3Config,
    SSEConfig,
    default_config,
    load_config,
    parse_config,
    parse_duration,
    validate,
)
from s3storage.errors import ConfigError
from s3storage.transport import Transport


def _valid(**overrides) -> S3Config:
    kwargs = dict(endpoint="s3.example.com", bucket="b")
    kwargs.update(overrides)
    return S3Config(**kwargs)


class TestDefaults:
    """Tests for default_config()."""

    def test_http_defaults(self):
        config = default_config()
        http = config.http_config
        assert http.idle_conn_timeout == timedelta(seconds=90)
        assert http.response_header_timeout == timedelta(minutes=2)
        assert http.tls_handshake_timeout == timedelta(seconds=10)
        assert http.expect_continue_timeout == timedelta(seconds=1)
        assert http.max_idle_conns == 100
        assert http.max_idle_conns_per_host == 100
        assert http.max_conns_per_host == 0
        assert http.insecure_skip_verify is False

    def test_part_size_default_is_64mib(self):
        assert default_config().part_size == 64 * 1024 * 1024

    def test_each_call_returns_fresh_value(self):
        """Defaults never share mutable state between configs."""
        a = default_config()
        b = default_config()
        a.put_user_metadata["k"] = "v"
        assert b.put_user_metadata == {}

    def test_config_is_immutable(self):
        config = default_config()
        with pytest.raises(ValidationError):
            config.bucket = "other"


class TestParseConfig:
    """Tests for parse_config()."""

    def test_full_document(self):
        config = parse_config(
            b"""
bucket: b
endpoint: minio:9000
region: eu-west-1
insecure: true
signature_version2: true
access_key: ak
secret_key: sk
put_user_metadata:
  team: data
http_config:
  idle_conn_timeout: 1m30s
  response_header_timeout: 500ms
  max_idle_conns: 5
trace:
  enable: true
list_objects_version: v1
part_size: 1024
sse_config:
  type: SSE-KMS
  kms_key_id: key-1
  kms_encryption_context:
    purpose: test
sts_endpoint: http://169.254.170.2
"""
        )
        assert config.bucket == "b"
        assert config.endpoint == "minio:9000"
        assert config.insecure is True
        assert config.signature_version2 is True
        assert config.put_user_metadata == {"team": "data"}
        assert config.http_config.idle_conn_timeout == timedelta(seconds=90)
        assert config.http_config.response_header_timeout == timedelta(milliseconds=500)
        assert config.http_config.max_idle_conns == 5
        # untouched nested fields keep their defaults
        assert config.http_config.tls_handshake_timeout == timedelta(seconds=10)
        assert config.trace.enable is True
        assert config.list_objects_version == "v1"
        assert config.part_size == 1024
        assert config.sse_config.kms_encryption_context == {"purpose": "test"}
        assert config.sts_endpoint == "http://169.254.170.2"

    def test_empty_document_uses_defaults(self):
        assert parse_config(b"") == default_config()

    def test_unknown_top_level_field_rejected(self):
        with pytest.raises(ConfigError, match="parse s3 config"):
            parse_config(b"endpoint: x\nbuckett: typo\n")

    def test_unknown_nested_field_rejected(self):
        with pytest.raises(ConfigError):
            parse_config(b"http_config:\n  idle_timeout: 1s\n")

    def test_malformed_yaml(self):
        with pytest.raises(ConfigError):
            parse_config(b"endpoint: [unclosed\n")

    def test_non_mapping_document(self):
        with pytest.raises(ConfigError, match="expected a mapping"):
            parse_config(b"- a\n- b\n")

    def test_null_encryption_context_becomes_empty_mapping(self):
        config = parse_config(b"sse_config:\n  kms_encryption_context: null\n")
        assert config.sse_config.kms_encryption_context == {}

    def test_transport_cannot_come_from_yaml(self):
        with pytest.raises(ConfigError):
            parse_config(b"http_config:\n  transport: custom\n")

    def test_null_transport_key_rejected(self):
        with pytest.raises(ConfigError, match="http_config.transport cannot be set"):
            parse_config(b"http_config:\n  transport: null\n")

    def test_secret_not_in_repr(self):
        config = parse_config(b"access_key: ak\nsecret_key: hunter2\n")
        assert "hunter2" not in repr(config)


class TestLoadConfig:
    """Tests for load_config()."""

    def test_load_example_config(self):
        config = load_config(Path(__file__).resolve().parent.parent / "s3storage.example.yaml")
        assert config.bucket == "metrics-archive"
        assert config.sse_config.type == "SSE-S3"
        validate(config)

    def test_load_from_tmp_file(self, tmp_path):
        path = tmp_path / "s3.yaml"
        path.write_text("endpoint: s3.example.com\nbucket: x\n")
        assert load_config(path).bucket == "x"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")


class TestParseDuration:
    """Tests for Go-style duration strings."""

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("90s", timedelta(seconds=90)),
            ("2m", timedelta(minutes=2)),
            ("1h30m", timedelta(hours=1, minutes=30)),
            ("250ms", timedelta(milliseconds=250)),
            ("1.5s", timedelta(seconds=1.5)),
            ("0", timedelta(0)),
        ],
    )
    def test_valid(self, text, expected):
        assert parse_duration(text) == expected

    @pytest.mark.parametrize("text", ["10", "abc", "5x", "1m junk"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_duration(text)

    def test_numbers_pass_through(self):
        assert parse_duration(5) == 5


class TestValidate:
    """Tests for validate()."""

    def test_valid_config(self):
        validate(_valid(access_key="a", secret_key="s"))

    def test_missing_endpoint(self):
        with pytest.raises(ConfigError, match="no s3 endpoint"):
            validate(S3Config(bucket="b"))

    def test_sdk_auth_and_access_key_exclusive(self):
        with pytest.raises(ConfigError, match="mutually exclusive"):
            validate(_valid(aws_sdk_auth=True, access_key="a", secret_key="s"))

    def test_secret_without_access_key(self):
        with pytest.raises(ConfigError, match="no s3 access_key specified while secret_key is present"):
            validate(_valid(access_key="", secret_key="x"))

    def test_access_key_without_secret(self):
        with pytest.raises(ConfigError, match="no s3 secret_key specified while access_key is present"):
            validate(_valid(access_key="a"))

    def test_sse_c_requires_key_file(self):
        with pytest.raises(ConfigError, match="encryption_key must be set"):
            validate(_valid(sse_config=SSEConfig(type="SSE-C")))

    def test_sse_kms_requires_key_id(self):
        with pytest.raises(ConfigError, match="kms_key_id must be set"):
            validate(_valid(sse_config=SSEConfig(type="SSE-KMS")))

    @pytest.mark.parametrize("version", ["", "v1", "v2"])
    def test_list_objects_versions_accepted(self, version):
        validate(_valid(list_objects_version=version))

    def test_unknown_list_objects_version(self):
        with pytest.raises(ConfigError, match="Supported values are v1, v2"):
            validate(_valid(list_objects_version="v3"))

    def test_first_violation_wins(self):
        """Only the first failing rule is reported."""
        config = S3Config(aws_sdk_auth=True, access_key="a", list_objects_version="v9")
        with pytest.raises(ConfigError, match="no s3 endpoint"):
            validate(config)

    def test_injected_transport_accepted(self):
        transport = Transport(config=BotoConfig())
        config = _valid(http_config={"transport": transport})
        assert config.http_config.transport is transport
        assert "transport" not in config.model_dump()["http_config"]
