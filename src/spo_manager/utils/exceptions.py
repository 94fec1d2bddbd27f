from enum import Enum


class SPOManagerError(Exception):
    """Base exception class for SharePoint Online Manager."""

    pass


class APIError(SPOManagerError):
    """Raised for errors related to SharePoint REST calls."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class SharePointAPIError(APIError):
    """Raised for specific errors from the SharePoint API."""

    def __init__(self, message, status_code=None, retry_after=None):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class MaxRetriesExceededError(APIError):
    """Raised when an API operation is still throttled after the maximum number of retries."""

    pass


class RemoteErrorKind(Enum):
    UNAUTHORIZED = "unauthorized"
    ACCESS_DENIED = "access_denied"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    THROTTLED = "throttled"
    UNKNOWN = "unknown"

    @classmethod
    def from_status(cls, status_code):
        if status_code == 401:
            return cls.UNAUTHORIZED
        if status_code == 403:
            return cls.ACCESS_DENIED
        if status_code == 404:
            return cls.NOT_FOUND
        if status_code in (429, 503):
            return cls.THROTTLED
        if status_code in (408, 504):
            return cls.TIMEOUT
        return cls.UNKNOWN


_DEFAULT_MESSAGES = {
    RemoteErrorKind.UNAUTHORIZED: "Authentication failed - credentials may have expired",
    RemoteErrorKind.ACCESS_DENIED: "Access denied - insufficient permissions",
    RemoteErrorKind.NOT_FOUND: "Site or resource not found",
    RemoteErrorKind.TIMEOUT: "Request timed out",
    RemoteErrorKind.THROTTLED: "Request throttled by SharePoint",
    RemoteErrorKind.UNKNOWN: "Unknown error",
}


class RemoteSiteError(SPOManagerError):
    """A classified failure from the remote site client.

    The orchestrator turns these into failed site results; anything else
    raised by a client is treated as a bug and propagates.
    """

    def __init__(self, kind: RemoteErrorKind, message=None, status_code=None, url=None):
        super().__init__(message or _DEFAULT_MESSAGES[kind])
        self.kind = kind
        self.status_code = status_code
        self.url = url

    @classmethod
    def from_status(cls, status_code, url=None, detail=None):
        kind = RemoteErrorKind.from_status(status_code)
        if kind is RemoteErrorKind.UNKNOWN:
            message = f"HTTP error: {status_code}"
        else:
            message = _DEFAULT_MESSAGES[kind]
        if detail:
            message = f"{message} ({detail})"
        return cls(kind, message, status_code=status_code, url=url)


class ConfigError(SPOManagerError):
    """Raised for configuration-related errors."""

    pass


class TaskDefinitionError(SPOManagerError):
    """Raised when a task definition cannot be executed as defined."""

    pass


class DatabaseError(SPOManagerError):
    """Raised for task and result store errors."""

    pass
