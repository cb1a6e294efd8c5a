"""Custom exceptions for the prover registry."""


class ProverRegistryError(Exception):
    """Base exception for the prover registry."""

    pass


class ProbeError(ProverRegistryError):
    """Raised when a prover endpoint fails its status check."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"probe of {url} failed: {reason}")


class CacheError(ProverRegistryError):
    """Base exception for snapshot cache failures."""

    pass


class CacheReadError(CacheError):
    """Raised when a snapshot cannot be read or decoded."""

    pass


class CacheWriteError(CacheError):
    """Raised when a snapshot cannot be encoded or written."""

    pass


class EndpointValidationError(ProverRegistryError):
    """Raised when a new prover endpoint is rejected at registration."""

    pass


class RefreshError(ProverRegistryError):
    """Raised when a namespace cannot be fully refreshed."""

    def __init__(self, namespace: str, reason: str):
        self.namespace = namespace
        self.reason = reason
        super().__init__(f"refresh of {namespace} failed: {reason}")
