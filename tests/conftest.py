"""Shared pytest fixtures for s3storage tests.

No test talks to a real object store: the botocore client is replaced by a
MagicMock injected through ``S3Storage(config, client=...)``.
"""

from unittest.mock import MagicMock

import pytest

from s3storage.client import S3Storage
from s3storage.config import S3Config


@pytest.fixture
def config() -> S3Config:
    """A valid static-key configuration."""
    return S3Config(
        bucket="test-bucket",
        endpoint="s3.example.com",
        region="us-east-1",
        access_key="AKIATEST",
        secret_key="test-secret",
    )


@pytest.fixture
def s3_client() -> MagicMock:
    """A stand-in for the botocore S3 client."""
    return MagicMock()


@pytest.fixture
def storage(config, s3_client) -> S3Storage:
    """An S3Storage wired to the mock client."""
    return S3Storage(config, client=s3_client)
