"""Error taxonomy for quota controller invocations."""

from __future__ import annotations

E_MISSING_CONFIG = "E_MISSING_CONFIG"
E_INVALID_CONFIG = "E_INVALID_CONFIG"
E_PROVIDER_UNAVAILABLE = "E_PROVIDER_UNAVAILABLE"
E_ACCESS_CONTROLLER = "E_ACCESS_CONTROLLER"
E_STATE_STORE = "E_STATE_STORE"


class QuotaControllerError(RuntimeError):
    """Base class for fatal invocation errors."""

    code = "E_QUOTA_CONTROLLER"


class MissingConfiguration(QuotaControllerError):
    """Raised when a required identifier or credential is absent."""

    code = E_MISSING_CONFIG


class InvalidConfiguration(QuotaControllerError):
    """Raised when a quota or threshold value fails validation."""

    code = E_INVALID_CONFIG


class ProviderUnavailable(QuotaControllerError):
    """Raised when usage metrics cannot be fetched or none are usable."""

    code = E_PROVIDER_UNAVAILABLE


class AccessControllerFailure(QuotaControllerError):
    """Raised when reading or updating the access key status fails."""

    code = E_ACCESS_CONTROLLER


class StateStoreError(QuotaControllerError):
    """Raised when the persisted snapshot cannot be read or written."""

    code = E_STATE_STORE
