"""Exception hierarchy shared by the indexing, search and diff layers."""

from __future__ import annotations


class VaultRagError(Exception):
    """Base class for all vaultrag errors."""


class ProviderError(VaultRagError):
    """Failure raised by an embedding or chat provider."""

    def __init__(
        self,
        message: str,
        *,
        raw_error: BaseException | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.raw_error = raw_error
        self.status = status


class ProviderConfigError(ProviderError):
    """Provider is misconfigured; the user has to fix settings before retrying."""


class ProviderAPIKeyNotSetError(ProviderConfigError):
    pass


class ProviderAPIKeyInvalidError(ProviderConfigError):
    pass


class ProviderBaseUrlNotSetError(ProviderConfigError):
    pass


class ProviderRateLimitError(ProviderError):
    pass


class ChunkContentError(VaultRagError):
    """A chunk reached the embedding step with empty content or null bytes."""


class DocumentReadError(VaultRagError):
    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"Failed to read {path}: {message}")
        self.path = path


class IndexingError(VaultRagError):
    pass


class IndexingCancelled(VaultRagError):
    pass


class InvalidBlockError(VaultRagError, ValueError):
    """Accept/reject targeted an out-of-range index or an unchanged block."""
