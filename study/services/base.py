"""Base exceptions for study services."""


class ServiceError(Exception):
    """Base class for all service-layer errors."""


class ServiceNotConfigured(ServiceError):
    """Raised when a required service has no active configuration."""


class ServiceDisabled(ServiceError):
    """Raised when a service exists but is explicitly disabled."""


class InvalidArgument(ServiceError, ValueError):
    """Raised for malformed caller input. Never retried."""


# ---------------------------------------------------------------------------
# Provider-level failures – recovered by one fallback hop inside the router
# ---------------------------------------------------------------------------

class ProviderError(ServiceError):
    """Base class for failures raised by a provider adapter."""

    def __init__(self, message: str, provider: str = '') -> None:
        self.provider = provider
        super().__init__(message)


class ProviderUnavailable(ProviderError):
    """Credentials missing or the upstream cannot be reached."""


class ProviderTimeout(ProviderError):
    """The upstream call exceeded its deadline."""


class ProviderRequestFailed(ProviderError):
    """The upstream rejected the request (malformed, quota exhausted, …)."""


# ---------------------------------------------------------------------------
# Router-level failures
# ---------------------------------------------------------------------------

class BudgetExceeded(ServiceError):
    """Admission was denied by the budget ledger for every provider tier."""


class AllProvidersExhausted(ServiceError):
    """Every configured provider tier failed for this request.

    ``failures`` holds ``(provider_name, exception)`` pairs in attempt order.
    """

    def __init__(self, message: str, failures: list | None = None) -> None:
        self.failures = list(failures or [])
        super().__init__(message)


# ---------------------------------------------------------------------------
# Retrieval / pipeline failures
# ---------------------------------------------------------------------------

class DimensionMismatch(InvalidArgument):
    """An embedding does not have the vector store's dimensionality."""


class NoContentAvailable(ServiceError):
    """The retrieval scope yielded no chunks."""


class InvalidPlanResponse(ServiceError):
    """The model returned a study plan that could not be parsed."""
