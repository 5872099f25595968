# services/api/imagecraft/exceptions.py

from __future__ import annotations


class ImageCraftError(Exception):
    """Base exception for all ImageCraft errors."""

    status_code = 500

    def __init__(self, message: str, *, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class UploadValidationError(ImageCraftError):
    """Raised when the caller has to fix their input. Never retried."""

    status_code = 400


class SignInRequiredError(ImageCraftError):
    """Raised when an anonymous caller attempts a signed-in action (download, delete)."""

    status_code = 401

    def __init__(self, message: str, *, sign_in_url: str):
        super().__init__(message)
        self.sign_in_url = sign_in_url


class ProviderError(ImageCraftError):
    """Raised when the media provider fails or answers with something unusable."""


class ProviderConfigError(ProviderError):
    """Raised when provider credentials are missing."""


class UploadTimeoutError(ProviderError):
    """Raised when a provider call exceeds its timeout."""

    status_code = 504


class TransferError(Exception):
    """Base exception for a single failed transfer round trip."""


class TransferHTTPError(TransferError):
    """Raised when a transfer gets a non-2xx answer."""

    def __init__(self, status_code: int, reason: str = ""):
        super().__init__(f"HTTP {status_code}: {reason}".rstrip(": "))
        self.status_code = int(status_code)


class MalformedResponseError(TransferError):
    """Raised when a transfer answer cannot be used (e.g. empty body)."""
