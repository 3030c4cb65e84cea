"""Error definitions for s3storage."""


class S3StorageError(Exception):
    """Base class for every error raised by s3storage.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# -- Construction-time errors -------------------------------------------------


class ConfigError(S3StorageError, ValueError):
    """The configuration is malformed or contradictory."""


class EncryptionConfigError(ConfigError):
    """Server-side encryption settings are unsupported or incomplete."""


class CredentialError(S3StorageError):
    """A credential provider could not produce credentials."""


# -- Per-call errors ----------------------------------------------------------


class InvalidOverrideError(S3StorageError, TypeError):
    """A per-call SSE override is not an encryption descriptor."""

    def __init__(self, value: object) -> None:
        super().__init__(
            f"invalid SSE config override provided: {type(value).__name__}"
        )
        self.value = value


class InvalidRangeError(S3StorageError, ValueError):
    """A range read was requested with a malformed offset/length pair."""

    def __init__(self, offset: int, length: int) -> None:
        super().__init__(f"Invalid range specified: offset={offset} length={length}")
        self.offset = offset
        self.length = length


class DoesNotExistError(S3StorageError, FileNotFoundError):
    """The requested object does not exist.

    Callers are expected to branch on this; it is an outcome, not a fault.
    """

    def __init__(self, name: str = "") -> None:
        super().__init__(f"Object not found: {name}" if name else "Object not found")
        self.name = name


class BackendError(S3StorageError):
    """An opaque failure reported by the object store.

    Attributes:
        operation: What was being done (e.g. "stat s3 object").
        name: The object key involved, if any.
        code: The backend error code, or "" when unavailable.
        detail: The backend's own error message, or "".
    """

    def __init__(
        self,
        operation: str,
        name: str = "",
        code: str = "",
        detail: str = "",
    ) -> None:
        message = f"{operation} {name}".strip()
        if code:
            message = f"{message}: {code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.operation = operation
        self.name = name
        self.code = code
        self.detail = detail
