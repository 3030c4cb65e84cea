"""Credential providers and the provider chain used to sign S3 requests.

Providers are tried in order; the first one that yields non-empty,
unexpired credentials wins. Every provider exposes the same two calls,
``retrieve()`` and ``is_expired()``. Wrappers such as
``SignatureOverrideProvider`` compose around a provider rather than
subclass it.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import botocore.session
from botocore.credentials import Credentials as BotoCredentials
from botocore.credentials import (
    AssumeRoleWithWebIdentityProvider,
    ContainerProvider,
    EnvProvider,
    ReadOnlyCredentials,
    RefreshableCredentials,
    SharedCredentialProvider,
)
from botocore.exceptions import BotoCoreError, ClientError
from botocore.utils import METADATA_BASE_URL, InstanceMetadataFetcher, parse_timestamp

from s3storage.errors import CredentialError

if TYPE_CHECKING:
    from s3storage.config import S3Config

logger = logging.getLogger(__name__)

# Treat credentials as expired slightly before their real expiry.
EXPIRY_WINDOW = timedelta(seconds=10)

# STS needs a region to resolve its endpoint when none is configured.
DEFAULT_STS_REGION = "us-east-1"


class SignatureType(Enum):
    """Request signing scheme, valued by botocore's signature_version names."""

    V4 = "s3v4"
    V2 = "s3"
    ANONYMOUS = "anonymous"

    def is_anonymous(self) -> bool:
        return self is SignatureType.ANONYMOUS


@dataclass(frozen=True)
class Credentials:
    """One set of credentials as produced by a provider."""

    access_key: str = ""
    secret_key: str = ""
    session_token: str = ""
    signature: SignatureType = SignatureType.V4
    expiration: datetime | None = None

    def __repr__(self) -> str:
        return (
            f"Credentials(access_key={self.access_key!r}, "
            f"signature={self.signature.name}, expiration={self.expiration!r})"
        )

    @property
    def is_empty(self) -> bool:
        return not self.access_key and not self.secret_key


ANONYMOUS = Credentials(signature=SignatureType.ANONYMOUS)


def _credentials(
    access_key: str,
    secret_key: str,
    session_token: str = "",
    expiration: datetime | None = None,
) -> Credentials:
    """Build a Credentials value; an empty key pair becomes anonymous."""
    if not access_key and not secret_key:
        return ANONYMOUS
    return Credentials(
        access_key=access_key,
        secret_key=secret_key,
        session_token=session_token or "",
        signature=SignatureType.V4,
        expiration=expiration,
    )


def _expired(expiration: datetime | None) -> bool:
    if expiration is None:
        return False
    return datetime.now(timezone.utc) >= expiration - EXPIRY_WINDOW


class CredentialProvider(Protocol):
    """The capability every credential source offers."""

    def retrieve(self) -> Credentials:
        """Return current credentials.

        Raises:
            CredentialError: If this source cannot produce credentials.
        """
        ...

    def is_expired(self) -> bool:
        """Return True when ``retrieve`` must be called again."""
        ...


class StaticProvider:
    """A fixed access/secret key pair from the configuration."""

    def __init__(self, access_key: str, secret_key: str, session_token: str = "") -> None:
        self._value = _credentials(access_key, secret_key, session_token)

    def retrieve(self) -> Credentials:
        return self._value

    def is_expired(self) -> bool:
        return False


class _BotocoreProvider:
    """Adapt one of botocore's credential providers to retrieve()/is_expired().

    Subclasses implement ``_load`` to return botocore credentials, or None
    when their source is not configured; that case yields anonymous
    credentials so the chain moves on.
    """

    description = "load credentials"

    def __init__(self) -> None:
        self._creds: BotoCredentials | None = None
        self._retrieved = False

    def _load(self) -> BotoCredentials | None:
        raise NotImplementedError

    def retrieve(self) -> Credentials:
        try:
            creds = self._load()
            frozen = creds.get_frozen_credentials() if creds is not None else None
        except (BotoCoreError, ClientError) as exc:
            raise CredentialError(f"{self.description}: {exc}") from exc

        self._creds = creds
        self._retrieved = True
        if frozen is None:
            return ANONYMOUS
        return _credentials(frozen.access_key, frozen.secret_key, frozen.token or "")

    def is_expired(self) -> bool:
        if not self._retrieved:
            return True
        if isinstance(self._creds, RefreshableCredentials):
            return self._creds.refresh_needed()
        return False


class EnvAWSProvider(_BotocoreProvider):
    """Credentials from the standard AWS environment variables.

    ``AWS_ACCESS_KEY``/``AWS_SECRET_KEY`` are read when the standard
    ``AWS_ACCESS_KEY_ID`` pair is absent.
    """

    description = "read AWS environment credentials"

    _LEGACY_MAPPING = {"access_key": "AWS_ACCESS_KEY", "secret_key": "AWS_SECRET_KEY"}

    def __init__(self, environ: dict[str, str] | None = None) -> None:
        super().__init__()
        self._providers = [
            EnvProvider(environ=environ),
            EnvProvider(environ=environ, mapping=self._LEGACY_MAPPING),
        ]

    def _load(self) -> BotoCredentials | None:
        for provider in self._providers:
            creds = provider.load()
            if creds is not None:
                return creds
        return None


class FileAWSCredentialsProvider(_BotocoreProvider):
    """Credentials from an AWS shared credentials file.

    Attributes:
        filename: Explicit file path; defaults to ``AWS_SHARED_CREDENTIALS_FILE``
            or ``~/.aws/credentials``.
        profile: Explicit profile; defaults to ``AWS_PROFILE`` or ``default``.
    """

    description = "read AWS credentials file"

    def __init__(self, filename: str = "", profile: str = "") -> None:
        super().__init__()
        self.filename = filename
        self.profile = profile

    def _path(self) -> Path:
        if self.filename:
            return Path(self.filename)
        env_file = os.environ.get("AWS_SHARED_CREDENTIALS_FILE")
        if env_file:
            return Path(env_file)
        return Path.home() / ".aws" / "credentials"

    def _load(self) -> BotoCredentials | None:
        path = self._path()
        profile = self.profile or os.environ.get("AWS_PROFILE") or "default"
        if not path.is_file():
            raise CredentialError(f"read AWS credentials file {path}: no such file")

        creds = SharedCredentialProvider(creds_filename=str(path), profile_name=profile).load()
        if creds is None:
            raise CredentialError(f"no credentials for profile {profile!r} in {path}")
        return creds


class WebIdentityProvider(_BotocoreProvider):
    """Role credentials from STS AssumeRoleWithWebIdentity.

    Configured through ``AWS_WEB_IDENTITY_TOKEN_FILE`` and ``AWS_ROLE_ARN``
    (as set up by EKS service-account roles). The STS call goes to
    ``endpoint`` when one is given.
    """

    description = "assume role with web identity"

    def __init__(
        self,
        endpoint: str = "",
        region: str = "",
        client_creator: Callable[..., Any] | None = None,
    ) -> None:
        super().__init__()
        self.endpoint = endpoint
        self.region = region
        self._session = botocore.session.Session()
        session = self._session
        self._provider = AssumeRoleWithWebIdentityProvider(
            load_config=lambda: session.full_config,
            client_creator=client_creator or self._sts_client,
            profile_name=session.get_config_variable("profile") or "default",
        )

    def _sts_client(self, service_name: str, **kwargs: Any) -> Any:
        kwargs.setdefault("region_name", self.region or DEFAULT_STS_REGION)
        if self.endpoint:
            kwargs["endpoint_url"] = self.endpoint
        return self._session.create_client(service_name, **kwargs)

    def _load(self) -> BotoCredentials | None:
        return self._provider.load()


class ContainerCredentialsProvider(_BotocoreProvider):
    """Task role credentials from the ECS/EKS container credentials endpoint.

    Configured through ``AWS_CONTAINER_CREDENTIALS_RELATIVE_URI`` or
    ``AWS_CONTAINER_CREDENTIALS_FULL_URI``.
    """

    description = "retrieve container credentials"

    def __init__(self, environ: dict[str, str] | None = None, fetcher: Any = None) -> None:
        super().__init__()
        self._provider = ContainerProvider(environ=environ, fetcher=fetcher)

    def _load(self) -> BotoCredentials | None:
        return self._provider.load()


class IAMProvider:
    """Temporary role credentials from the instance metadata service.

    Attributes:
        endpoint: Custom metadata endpoint; the EC2 default when empty.
    """

    def __init__(self, endpoint: str = "", timeout: float = 1.0) -> None:
        self.endpoint = endpoint
        self._fetcher = InstanceMetadataFetcher(
            timeout=timeout,
            num_attempts=1,
            base_url=endpoint or METADATA_BASE_URL,
        )
        self._expiration: datetime | None = None
        self._retrieved = False

    def retrieve(self) -> Credentials:
        data = self._fetcher.retrieve_iam_role_credentials()
        if not data:
            raise CredentialError(
                f"no IAM role credentials available from {self.endpoint or METADATA_BASE_URL}"
            )
        expiration = parse_timestamp(data["expiry_time"]) if data.get("expiry_time") else None
        self._expiration = expiration
        self._retrieved = True
        return _credentials(
            data.get("access_key", ""),
            data.get("secret_key", ""),
            data.get("token", ""),
            expiration,
        )

    def is_expired(self) -> bool:
        return not self._retrieved or _expired(self._expiration)


class AWSSDKProvider(_BotocoreProvider):
    """Credentials resolved by botocore's own default chain for a region."""

    description = "retrieve AWS SDK credentials"

    def __init__(self, region: str = "") -> None:
        super().__init__()
        self.region = region

    def _load(self) -> BotoCredentials | None:
        try:
            session = botocore.session.Session()
            if self.region:
                session.set_config_variable("region", self.region)
            creds = session.get_credentials()
        except BotoCoreError as exc:
            raise CredentialError(f"load AWS SDK config: {exc}") from exc

        if creds is None:
            raise CredentialError("retrieve AWS SDK credentials: no credentials found")
        return creds



class SignatureOverrideProvider:
    """Force a signature scheme on another provider's credentials.

    Anonymous credentials are returned untouched: unsigned requests must
    not carry a scheme at all.
    """

    def __init__(self, provider: CredentialProvider, signature: SignatureType) -> None:
        self.provider = provider
        self.signature = signature

    def retrieve(self) -> Credentials:
        value = self.provider.retrieve()
        if value.signature.is_anonymous():
            return value
        return replace(value, signature=self.signature)

    def is_expired(self) -> bool:
        return self.provider.is_expired()


class ChainProvider:
    """Try providers in order and remember the one that worked."""

    def __init__(self, providers: list[CredentialProvider]) -> None:
        self.providers = list(providers)
        self._current: CredentialProvider | None = None

    def retrieve(self) -> Credentials:
        failures: list[str] = []
        for provider in self.providers:
            try:
                value = provider.retrieve()
            except CredentialError as exc:
                logger.debug("Credential provider %s failed: %s", type(provider).__name__, exc)
                failures.append(f"{type(provider).__name__}: {exc.message}")
                continue
            if value.is_empty or provider.is_expired():
                continue
            self._current = provider
            return value

        self._current = None
        if failures:
            raise CredentialError(
                "no valid credentials in chain: " + "; ".join(failures)
            )
        return ANONYMOUS

    def is_expired(self) -> bool:
        return self._current is None or self._current.is_expired()


class CachedCredentials:
    """Thread-safe memo over a provider, refreshed only on expiry."""

    def __init__(self, provider: CredentialProvider) -> None:
        self._provider = provider
        self._value: Credentials | None = None
        self._lock = threading.Lock()

    def get(self) -> Credentials:
        with self._lock:
            if self._value is None or self._provider.is_expired():
                self._value = self._provider.retrieve()
            return self._value


class BotocoreCredentials(BotoCredentials):
    """Expose CachedCredentials through botocore's credentials interface.

    botocore's signers call ``get_frozen_credentials()`` on every request,
    which gives the chain a chance to refresh expiring credentials.
    """

    def __init__(self, cached: CachedCredentials) -> None:
        self._cached = cached
        self.method = "s3storage-chain"

    def get_frozen_credentials(self) -> ReadOnlyCredentials:
        value = self._cached.get()
        return ReadOnlyCredentials(value.access_key, value.secret_key, value.session_token or None)

    @property
    def access_key(self) -> str:
        return self._cached.get().access_key

    @property
    def secret_key(self) -> str:
        return self._cached.get().secret_key

    @property
    def token(self) -> str | None:
        return self._cached.get().session_token or None


def build_chain(config: S3Config) -> list[CredentialProvider]:
    """Build the ordered provider list for a configuration.

    SDK auth and static keys each produce a single provider; otherwise the
    environment, shared credentials file, web identity role, container
    credentials and instance metadata are tried. ``sts_endpoint`` serves
    as both the STS endpoint and the instance metadata endpoint.

    With ``signature_version2`` every provider is wrapped to sign with V2.
    """
    if config.signature_version2:
        def wrap(provider: CredentialProvider) -> CredentialProvider:
            return SignatureOverrideProvider(provider, SignatureType.V2)
    else:
        def wrap(provider: CredentialProvider) -> CredentialProvider:
            return provider

    if config.aws_sdk_auth:
        return [wrap(AWSSDKProvider(region=config.region))]
    if config.access_key:
        return [wrap(StaticProvider(config.access_key, config.secret_key))]
    return [
        wrap(EnvAWSProvider()),
        wrap(FileAWSCredentialsProvider()),
        wrap(WebIdentityProvider(endpoint=config.sts_endpoint, region=config.region)),
        wrap(ContainerCredentialsProvider()),
        wrap(IAMProvider(endpoint=config.sts_endpoint)),
    ]
