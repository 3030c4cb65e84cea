"""S3-compatible object storage client for s3storage.

Wraps a synchronous botocore S3 client behind a byte-object interface:
read, ranged read, write, stat, list, exists and remove. Object names are
normalized before every call and botocore errors are translated into the
s3storage error taxonomy.

Key normalization:
    "/a/b.txt" -> "a/b.txt"   (at most one leading "/" is removed)
    list("a/b") lists "a/b/"  (non-recursive, directory marker skipped)
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Callable, Iterator
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import botocore.session
from botocore import UNSIGNED
from botocore.config import Config as BotoConfig
from botocore.credentials import CredentialProvider as BotoCredentialProvider
from botocore.credentials import CredentialResolver
from botocore.exceptions import BotoCoreError, ClientError

from s3storage import metrics
from s3storage.config import S3Config, parse_config, validate
from s3storage.credentials import (
    BotocoreCredentials,
    CachedCredentials,
    ChainProvider,
    build_chain,
)
from s3storage.encryption import ServerSideEncryption, build_sse, resolve_sse
from s3storage.errors import BackendError, DoesNotExistError, InvalidRangeError
from s3storage.transport import build_transport

logger = logging.getLogger(__name__)

# DIR_DELIM models a directory structure in a flat bucket namespace.
DIR_DELIM = "/"

DEFAULT_REGION = "us-east-1"

# Codes for a missing key on HEAD/list/delete paths (HEAD has no body, so
# botocore reports the bare status).
_DOES_NOT_EXIST_CODES = frozenset({"NoSuchKey", "NotFound", "404"})
# Codes for a missing key surfaced while opening or first reading a GET.
_OBJ_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NotFoundObject"})


@dataclass(frozen=True)
class ObjectInfo:
    """Metadata for one object.

    Attributes:
        name: Leaf name of the object (path prefix stripped).
        size: Object size in bytes.
        mod_time: Last-modified timestamp reported by the store.
    """

    name: str
    size: int
    mod_time: datetime | None


def trim_leading(name: str) -> str:
    """Remove a single leading ``/`` from an object name."""
    if name.startswith(DIR_DELIM):
        return name[1:]
    return name


def trim_name(key: str) -> str:
    """Return the part of ``key`` after its last ``/``."""
    return key.rsplit(DIR_DELIM, 1)[-1]


def error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def is_does_not_exist(exc: ClientError) -> bool:
    """True if a HEAD/list/delete error means the key is missing."""
    return error_code(exc) in _DOES_NOT_EXIST_CODES


def is_obj_not_found(exc: ClientError) -> bool:
    """True if a GET error means the key is missing."""
    return error_code(exc) in _OBJ_NOT_FOUND_CODES


def backend_error(operation: str, name: str, exc: Exception) -> BackendError:
    """Wrap a botocore failure, keeping the store's code and message."""
    if isinstance(exc, ClientError):
        err = exc.response.get("Error", {})
        return BackendError(operation, name, err.get("Code", ""), err.get("Message", ""))
    return BackendError(operation, name, detail=str(exc))


def range_header(offset: int, length: int) -> str | None:
    """Build the HTTP Range value for a ranged read.

    Args:
        offset: First byte to read.
        length: Number of bytes, or -1 to read to the end.

    Returns:
        ``"bytes=N-M"``, ``"bytes=N-"``, or None for the whole object.

    Raises:
        InvalidRangeError: On a negative offset, zero length or a length
            below -1.
    """
    if offset < 0 or length == 0 or length < -1:
        raise InvalidRangeError(offset, length)
    if length == -1:
        return f"bytes={offset}-" if offset > 0 else None
    return f"bytes={offset}-{offset + length - 1}"


def endpoint_url(config: S3Config) -> str:
    """Turn the configured host[:port] into a URL, honoring ``insecure``."""
    if "://" in config.endpoint:
        return config.endpoint
    scheme = "http" if config.insecure else "https"
    return f"{scheme}://{config.endpoint}"


class _ChainCredentialLoader(BotoCredentialProvider):
    """Plug the s3storage provider chain into a botocore session."""

    METHOD = "s3storage-chain"

    def __init__(self, cached: CachedCredentials) -> None:
        super().__init__()
        self._cached = cached

    def load(self) -> BotocoreCredentials:
        return BotocoreCredentials(self._cached)


def new_s3_client(config: S3Config) -> Any:
    """Create the botocore S3 client for a validated configuration.

    Credentials are resolved once here so the signing scheme is known;
    a chain with no usable provider fails construction.

    Raises:
        CredentialError: If every credential provider failed.
    """
    cached = CachedCredentials(ChainProvider(build_chain(config)))
    creds = cached.get()
    transport = build_transport(config)

    signature = UNSIGNED if creds.signature.is_anonymous() else creds.signature.value
    boto_config = transport.config.merge(
        BotoConfig(signature_version=signature, s3={"addressing_style": "auto"})
    )

    session = botocore.session.Session()
    session.register_component(
        "credential_provider",
        CredentialResolver(providers=[_ChainCredentialLoader(cached)]),
    )
    return session.create_client(
        "s3",
        region_name=config.region or DEFAULT_REGION,
        endpoint_url=endpoint_url(config),
        use_ssl=not config.insecure,
        verify=transport.verify,
        config=boto_config,
    )


def _finish(operation: str, status: str, bucket: str, start: float) -> None:
    """Record an operation's outcome and log how long it took."""
    metrics.record_operation(operation, status)
    duration_ms = round((time.monotonic() - start) * 1000, 3)
    logger.debug(
        "S3Storage.%s %s in %.1fms",
        operation,
        status,
        duration_ms,
        extra={"operation": operation, "bucket": bucket, "duration_ms": duration_ms},
    )


def _observed(operation: str) -> Callable:
    """Count an operation's outcome and log its duration."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(self: S3Storage, *args: Any, **kwargs: Any) -> Any:
            start = time.monotonic()
            status = metrics.STATUS_ERROR
            try:
                result = func(self, *args, **kwargs)
                status = metrics.STATUS_OK
                return result
            except DoesNotExistError:
                status = metrics.STATUS_NOT_FOUND
                raise
            finally:
                _finish(operation, status, self._name, start)

        return wrapper

    return decorator


class S3Storage:
    """Byte-object storage over one bucket of an S3-compatible store.

    The instance holds only immutable state and a thread-safe botocore
    client, so it can be shared between threads.

    Attributes:
        name: The bucket name.
    """

    def __init__(self, config: S3Config, client: Any = None) -> None:
        """Validate the configuration and build the client.

        Args:
            config: The storage configuration.
            client: Optional pre-built botocore S3 client; when omitted one
                is created from ``config``.

        Raises:
            ConfigError: If the configuration is invalid.
            EncryptionConfigError: If the SSE settings cannot be honored.
            CredentialError: If no credential provider succeeds.
        """
        validate(config)
        self._config = config
        self._name = config.bucket
        self._default_sse = build_sse(config)
        self._put_user_metadata = dict(config.put_user_metadata)
        self._part_size = config.part_size
        self._list_objects_v1 = config.list_objects_version == "v1"
        self._client = client if client is not None else new_s3_client(config)

        logger.info(
            "S3 storage initialized: endpoint=%s bucket=%s region=%s auth=%s sse=%s",
            config.endpoint,
            config.bucket,
            config.region or DEFAULT_REGION,
            _auth_mode(config),
            config.sse_config.type or "none",
        )

    @classmethod
    def from_bytes(cls, conf: bytes | str) -> S3Storage:
        """Parse a YAML configuration and build the storage from it."""
        logger.info("Creating new S3 storage")
        return cls(parse_config(conf))

    @property
    def name(self) -> str:
        return self._name

    @property
    def default_sse(self) -> ServerSideEncryption | None:
        return self._default_sse

    @property
    def part_size(self) -> int:
        return self._part_size

    def full_path(self, name: str) -> str:
        return trim_leading(name)

    def close(self) -> None:
        """Release the client's connection pool."""
        self._client.close()

    # -- Reads --------------------------------------------------------------

    @_observed("read")
    def read(self, name: str, sse: ServerSideEncryption | None = None) -> bytes:
        """Read a whole object.

        Raises:
            DoesNotExistError: If the object does not exist.
            BackendError: For any other store failure.
        """
        name = trim_leading(name)
        logger.debug("S3Storage.read(%s)", name)
        return self._get_range(name, 0, -1, sse)

    @_observed("read_range")
    def read_range(
        self,
        name: str,
        offset: int,
        length: int,
        sse: ServerSideEncryption | None = None,
    ) -> bytes:
        """Read ``length`` bytes starting at ``offset`` (-1 reads to the end).

        Raises:
            InvalidRangeError: If the offset/length pair is malformed.
            DoesNotExistError: If the object does not exist.
            BackendError: For any other store failure.
        """
        name = trim_leading(name)
        logger.debug("S3Storage.read_range(%s, %d, %d)", name, offset, length)
        return self._get_range(name, offset, length, sse)

    def _get_range(
        self,
        name: str,
        offset: int,
        length: int,
        sse: ServerSideEncryption | None,
    ) -> bytes:
        header = range_header(offset, length)
        resolved = resolve_sse(self._default_sse, sse)

        kwargs: dict[str, Any] = {"Bucket": self._name, "Key": name}
        if header is not None:
            kwargs["Range"] = header
        if resolved is not None:
            kwargs.update(resolved.get_params())

        try:
            resp = self._client.get_object(**kwargs)
        except ClientError as exc:
            if is_obj_not_found(exc):
                raise DoesNotExistError(name) from exc
            raise backend_error("get s3 object", name, exc) from exc
        except BotoCoreError as exc:
            raise backend_error("get s3 object", name, exc) from exc

        # Some stores only report a missing object on the first body read,
        # so prime the stream before handing bytes back.
        with closing(resp["Body"]) as body:
            try:
                body.read(0)
                data = body.read()
            except ClientError as exc:
                if is_obj_not_found(exc):
                    raise DoesNotExistError(name) from exc
                raise backend_error("read from s3 failed", name, exc) from exc
            except BotoCoreError as exc:
                raise backend_error("read from s3 failed", name, exc) from exc

        metrics.record_bytes_read(len(data))
        return data

    def _head(self, name: str) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"Bucket": self._name, "Key": name}
        if self._default_sse is not None:
            kwargs.update(self._default_sse.get_params())
        return self._client.head_object(**kwargs)

    @_observed("exists")
    def exists(self, name: str) -> bool:
        """Check whether an object exists; a missing key is not an error."""
        name = trim_leading(name)
        try:
            self._head(name)
        except ClientError as exc:
            if is_does_not_exist(exc):
                return False
            raise backend_error("stat s3 object", name, exc) from exc
        except BotoCoreError as exc:
            raise backend_error("stat s3 object", name, exc) from exc
        return True

    @_observed("stat")
    def stat(self, name: str) -> ObjectInfo:
        """Return size and modification time of an object.

        Raises:
            DoesNotExistError: If the object does not exist.
            BackendError: For any other store failure.
        """
        name = trim_leading(name)
        logger.debug("S3Storage.stat(%s)", name)
        try:
            resp = self._head(name)
        except ClientError as exc:
            if is_does_not_exist(exc):
                raise DoesNotExistError(name) from exc
            raise backend_error("stat s3 object", name, exc) from exc
        except BotoCoreError as exc:
            raise backend_error("stat s3 object", name, exc) from exc

        return ObjectInfo(
            name=trim_name(name),
            size=resp.get("ContentLength", 0),
            mod_time=resp.get("LastModified"),
        )

    def list(self, prefix: str = "") -> Iterator[ObjectInfo]:
        """Lazily list the objects directly under ``prefix``.

        A non-empty prefix is treated as a directory: it is made to end in
        exactly one ``/`` and only its immediate children are returned.
        Sub-directories (common prefixes) are not objects and are skipped.
        The generator fetches one page at a time and cannot be restarted.

        Raises:
            BackendError: On the first failed page; nothing further is yielded.
        """
        prefix = trim_leading(prefix)
        if prefix:
            prefix = prefix.rstrip(DIR_DELIM) + DIR_DELIM
        logger.debug("S3Storage.list(%s)", prefix)

        operation = "list_objects" if self._list_objects_v1 else "list_objects_v2"
        paginator = self._client.get_paginator(operation)
        pages = paginator.paginate(Bucket=self._name, Prefix=prefix, Delimiter=DIR_DELIM)

        start = time.monotonic()
        status = metrics.STATUS_OK
        try:
            for page in pages:
                for obj in page.get("Contents", []):
                    key = obj.get("Key", "")
                    # Empty buckets can yield blank keys; the store may also
                    # return the directory marker itself.
                    if not key or key == prefix:
                        continue
                    yield ObjectInfo(
                        name=trim_name(key),
                        size=obj.get("Size", 0),
                        mod_time=obj.get("LastModified"),
                    )
        except (ClientError, BotoCoreError) as exc:
            status = metrics.STATUS_ERROR
            raise backend_error("list s3 objects", prefix, exc) from exc
        finally:
            # Also runs when the caller stops iterating early.
            _finish("list", status, self._name, start)

    # -- Writes -------------------------------------------------------------

    @_observed("write")
    def write(
        self,
        name: str,
        data: bytes,
        sse: ServerSideEncryption | None = None,
    ) -> None:
        """Upload ``data`` as a single PutObject.

        Raises:
            InvalidOverrideError: If ``sse`` is not an encryption descriptor.
            BackendError: If the upload fails.
        """
        name = trim_leading(name)
        logger.info(
            "S3Storage.write(%s) %d bytes",
            name,
            len(data),
            extra={"operation": "write", "object": name, "bucket": self._name},
        )
        resolved = resolve_sse(self._default_sse, sse)

        kwargs: dict[str, Any] = {
            "Bucket": self._name,
            "Key": name,
            "Body": data,
            "Metadata": self._put_user_metadata,
        }
        if resolved is not None:
            kwargs.update(resolved.put_params())

        try:
            self._client.put_object(**kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise backend_error("upload s3 object", name, exc) from exc

        metrics.record_bytes_written(len(data))

    @_observed("remove")
    def remove(self, name: str) -> None:
        """Delete an object; deleting a missing key is left to the store."""
        name = trim_leading(name)
        logger.info(
            "S3Storage.remove(%s)",
            name,
            extra={"operation": "remove", "object": name, "bucket": self._name},
        )
        try:
            self._client.delete_object(Bucket=self._name, Key=name)
        except ClientError as exc:
            if is_does_not_exist(exc):
                raise DoesNotExistError(name) from exc
            raise backend_error("remove s3 object", name, exc) from exc
        except BotoCoreError as exc:
            raise backend_error("remove s3 object", name, exc) from exc


def _auth_mode(config: S3Config) -> str:
    if config.aws_sdk_auth:
        mode = "aws-sdk"
    elif config.access_key:
        mode = "static"
    else:
        mode = "chain"
    if config.signature_version2:
        mode += "+v2"
    return mode
