"""Tests for server-side encryption descriptors and selection."""

import base64
import json

import pytest

from s3storage.client import S3Storage
from s3storage.config import S3Config, SSEConfig
from s3storage.encryption import SSEC, SSEKMS, SSES3, build_sse, resolve_sse
from s3storage.errors import EncryptionConfigError, InvalidOverrideError


def _config(**sse) -> S3Config:
    return S3Config(endpoint="s3.example.com", bucket="b", sse_config=SSEConfig(**sse))


class TestDescriptors:
    """Request parameters rendered by each descriptor."""

    def test_sse_s3(self):
        assert SSES3().put_params() == {"ServerSideEncryption": "AES256"}
        assert SSES3().get_params() == {}

    def test_sse_kms(self):
        params = SSEKMS("key-1", {"purpose": "test"}).put_params()
        assert params["ServerSideEncryption"] == "aws:kms"
        assert params["SSEKMSKeyId"] == "key-1"
        decoded = json.loads(base64.b64decode(params["SSEKMSEncryptionContext"]))
        assert decoded == {"purpose": "test"}

    def test_sse_kms_empty_context_is_empty_object(self):
        assert SSEKMS("key-1").encoded_context() == "e30="
        assert SSEKMS("key-1", None).context == {}

    def test_sse_kms_requires_key_id(self):
        with pytest.raises(EncryptionConfigError):
            SSEKMS("")

    def test_sse_c(self):
        key = b"k" * 32
        expected = {"SSECustomerAlgorithm": "AES256", "SSECustomerKey": key}
        assert SSEC(key).put_params() == expected
        assert SSEC(key).get_params() == expected

    def test_sse_c_key_length(self):
        with pytest.raises(EncryptionConfigError, match="must be 32 bytes"):
            SSEC(b"short")

    def test_sse_c_key_not_in_repr(self):
        assert "kkkk" not in repr(SSEC(b"k" * 32))


class TestBuildSSE:
    """Tests for build_sse()."""

    def test_no_type_means_no_encryption(self):
        assert build_sse(_config()) is None

    def test_sse_s3(self):
        assert build_sse(_config(type="SSE-S3")) == SSES3()

    def test_sse_kms(self):
        sse = build_sse(_config(type="SSE-KMS", kms_key_id="key-1", kms_encryption_context={"a": "b"}))
        assert sse == SSEKMS("key-1", {"a": "b"})

    def test_sse_kms_without_context(self):
        sse = build_sse(_config(type="SSE-KMS", kms_key_id="key-1"))
        assert sse.context == {}

    def test_sse_kms_missing_key_id(self):
        with pytest.raises(EncryptionConfigError, match="kms_key_id must be set"):
            build_sse(_config(type="SSE-KMS"))

    def test_sse_c_reads_key_file(self, tmp_path):
        key_file = tmp_path / "sse.key"
        key_file.write_bytes(bytes(range(32)))
        sse = build_sse(_config(type="SSE-C", encryption_key=str(key_file)))
        assert sse == SSEC(bytes(range(32)))

    def test_sse_c_missing_key_file(self, tmp_path):
        with pytest.raises(EncryptionConfigError, match="read SSE-C encryption key"):
            build_sse(_config(type="SSE-C", encryption_key=str(tmp_path / "missing")))

    def test_sse_c_wrong_key_size(self, tmp_path):
        key_file = tmp_path / "sse.key"
        key_file.write_bytes(b"too short")
        with pytest.raises(EncryptionConfigError):
            build_sse(_config(type="SSE-C", encryption_key=str(key_file)))

    def test_unsupported_type(self):
        with pytest.raises(EncryptionConfigError, match="Unsupported type 'SSE-X'"):
            build_sse(_config(type="SSE-X"))

    def test_storage_default_matches_config(self, s3_client):
        config = S3Config(
            endpoint="s3.example.com",
            bucket="b",
            sse_config=SSEConfig(type="SSE-KMS", kms_key_id="key-1"),
        )
        storage = S3Storage(config, client=s3_client)
        assert storage.default_sse == build_sse(config)


class TestResolveSSE:
    """Tests for resolve_sse()."""

    def test_default_when_no_override(self):
        assert resolve_sse(SSES3()) == SSES3()
        assert resolve_sse(None) is None

    def test_override_wins(self):
        override = SSEKMS("other")
        assert resolve_sse(SSES3(), override) is override

    def test_invalid_override(self):
        with pytest.raises(InvalidOverrideError, match="invalid SSE config override provided: str"):
            resolve_sse(None, "AES256")
