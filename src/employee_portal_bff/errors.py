# src/employee_portal_bff/errors.py

from typing import Optional


class PortalError(Exception):
    """Base class for failures the BFF translates into HTTP responses."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class TransportError(PortalError):
    """The upstream API (or the IP lookup service) could not be reached."""


class InvalidCredentialsError(PortalError):
    """Upstream answered 401 to the credential exchange."""

    def __init__(self, message: str):
        super().__init__(message, status_code=401)


class UpstreamError(PortalError):
    """Upstream refused the request with a non-success payload or status."""


class UploadValidationError(PortalError):
    """A required multipart part is missing from an upload request."""

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class StorageError(PortalError):
    def __init__(self, name: str, message: str):
        self.name = name
        super().__init__(message, status_code=500)

    @property
    def detail(self) -> str:
        return f"Failed to upload to S3: {self.message} ({self.name})"
