"""
Custom exception classes for the ingestion engine.

Every component raises one of these so callers (the HTTP layer, the watcher
callback, the relay) can decide between rejecting, retrying and reporting.
"""
from typing import Optional


class ApplicationError(Exception):
    """Base exception for all application errors"""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class InputValidationError(ApplicationError):
    """Raised when a request is missing fields or carries malformed values"""

    def __init__(self, message: str, invalid_fields: Optional[list] = None):
        details = {"invalid_fields": invalid_fields} if invalid_fields else {}
        super().__init__(message, details)


class ResourceError(ApplicationError):
    """Raised when a local resource needed to start a session is unusable"""


class DirectoryError(ResourceError):
    """Raised when the target directory does not exist or is not a directory"""

    def __init__(self, directory: str, message: Optional[str] = None):
        msg = message or "Directory does not exist or is inaccessible"
        super().__init__(msg, {"directory": directory})


class NoPortAvailable(ResourceError):
    """Raised when every probed port is already bound"""

    def __init__(self, start_port: int, attempts: int):
        last_port = start_port + attempts - 1
        msg = f"No available ports found between {start_port} and {last_port}"
        super().__init__(msg, {"start_port": start_port, "attempts": attempts})


class ServerStartError(ResourceError):
    """Raised when the FTP server cannot bind or start listening"""


class AuthError(ApplicationError):
    """Raised when FTP credentials do not match the stored session"""

    def __init__(self, username: str, message: str = "Invalid credentials"):
        super().__init__(message, {"username": username})


class TransientNetworkError(ApplicationError):
    """Raised for failures worth retrying (timeouts, resets, 5xx responses)"""

    def __init__(self, message: str, status_code: Optional[int] = None, operation: Optional[str] = None):
        details = {}
        if status_code is not None:
            details["status_code"] = status_code
        if operation:
            details["operation"] = operation
        super().__init__(message, details)
        self.status_code = status_code


class RemoteRequestError(ApplicationError):
    """Raised when a remote service answers with a permanent (non-retryable) error"""

    def __init__(self, message: str, status_code: Optional[int] = None, operation: Optional[str] = None):
        details = {}
        if status_code is not None:
            details["status_code"] = status_code
        if operation:
            details["operation"] = operation
        super().__init__(message, details)
        self.status_code = status_code


class UploadRejected(RemoteRequestError):
    """Raised when the object store permanently refuses the payload as encoded"""


class ValidationGateFailure(ApplicationError):
    """Raised when an ingested file is not a recognised image"""

    def __init__(self, filename: str, message: Optional[str] = None):
        super().__init__(message or f"Not an image: {filename}", {"filename": filename})
        self.filename = filename


class RelayError(ApplicationError):
    """Raised when a relay pipeline fails terminally at one of its stages"""

    def __init__(self, stage: str, filename: str, message: str):
        super().__init__(message, {"stage": stage, "filename": filename})
        self.stage = stage
        self.filename = filename
