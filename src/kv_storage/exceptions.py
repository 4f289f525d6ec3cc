"""kv-storage exceptions."""

from typing import Any

KEY_NOT_FOUND = 10009


class KVStorageError(Exception):
    """Base exception for kv-storage."""

    pass


class ConfigError(KVStorageError):
    """Configuration or credentials error."""

    pass


class RemoteError(KVStorageError):
    """A remote call failed.

    Carries the error objects returned by the API (``{"code", "message"}``)
    and the HTTP status when a response was received at all.
    """

    def __init__(
        self,
        message: str,
        errors: list[dict[str, Any]] | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.errors = list(errors or [])
        self.status_code = status_code

    @property
    def code(self) -> int | None:
        """Code of the first remote error, if any."""
        for error in self.errors:
            if error.get("code") is not None:
                return error["code"]
        return None

    def has_code(self, code: int) -> bool:
        """Whether any remote error carries ``code``."""
        return any(error.get("code") == code for error in self.errors)

    @property
    def messages(self) -> list[str]:
        """Messages of all remote errors."""
        return [str(e.get("message")) for e in self.errors if e.get("message")]

    @classmethod
    def from_payload(
        cls,
        action: str,
        payload: dict[str, Any],
        status_code: int | None = None,
    ) -> "RemoteError":
        """Build an error from an API envelope with ``success: false``."""
        errors = payload.get("errors") or []
        detail = "; ".join(
            f"[{e.get('code')}] {e.get('message')}" for e in errors
        ) or f"HTTP {status_code}"
        return cls(f"{action} failed: {detail}", errors=errors, status_code=status_code)


class NamespaceCreationError(RemoteError):
    """Failed to create the namespace backing a storage area."""

    pass


class ListingError(RemoteError):
    """A key listing request failed mid-traversal."""

    pass


class FetchError(RemoteError):
    """A value fetch within an iteration page failed."""

    pass


class ReadError(RemoteError):
    """A single-entry read failed."""

    pass


class WriteError(RemoteError):
    """One or more writes failed.

    ``failures`` holds the individual errors when several writes were
    issued as part of one call.
    """

    def __init__(
        self,
        message: str,
        errors: list[dict[str, Any]] | None = None,
        status_code: int | None = None,
        failures: list[RemoteError] | None = None,
    ) -> None:
        super().__init__(message, errors, status_code)
        self.failures = list(failures or [])

    @classmethod
    def aggregate(cls, action: str, failures: list[RemoteError]) -> "WriteError":
        """Combine several failed writes into one error."""
        errors = [error for failure in failures for error in failure.errors]
        detail = "; ".join(str(f) for f in failures)
        return cls(
            f"{action} failed for {len(failures)} request(s): {detail}",
            errors=errors,
            failures=failures,
        )


class DeleteError(WriteError):
    """One or more deletes failed."""

    pass


class ClearError(RemoteError):
    """Deleting the namespace failed."""

    pass
