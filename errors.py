from typing import Optional

from schemas import SyncStats


class NotFound(ValueError):
    pass


class InconsistentReference(ValueError):
    pass


class CredentialUnavailable(RuntimeError):
    pass


class ProviderError(RuntimeError):
    kind = "provider_error"
    retryable = False

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class ProviderUnavailable(ProviderError):
    """Transient provider or network failure; safe to retry with backoff."""

    kind = "provider_unavailable"
    retryable = True


class ProviderRejected(ProviderError):
    """The provider refused the credential; the user has to reconnect."""

    kind = "provider_rejected"


class SyncFailed(RuntimeError):
    """A link sync stopped early.

    ``stats`` holds what was committed before the failure. The link's cursor
    still points at the last committed page, so the sync can be resumed.
    """

    def __init__(
        self, link_id: int, kind: str, message: str, stats: SyncStats
    ) -> None:
        super().__init__(message)
        self.link_id = link_id
        self.kind = kind
        self.message = message
        self.stats = stats

    @property
    def retryable(self) -> bool:
        return self.kind in {"provider_unavailable", "deadline_exceeded"}

    @property
    def reconnect_required(self) -> bool:
        return self.kind == "provider_rejected"
