"""
Chatflow error types.
"""

from typing import Any, Optional


class ChatflowError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class HttpError(ChatflowError):
    """Non-2xx response. `server_message` is the backend's `message` field, if any."""

    def __init__(self, status_code: int, message: str, server_message: Optional[str] = None):
        super().__init__("http_error", message, {"status_code": status_code})
        self.status_code = status_code
        self.server_message = server_message


class ConnectionError(ChatflowError):
    def __init__(self, message: str):
        super().__init__("connection_error", message)


class SessionError(ChatflowError):
    def __init__(self, message: str, code: str = "session_error", details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class TurnInProgressError(SessionError):
    def __init__(self, message: str = "A turn is already in flight for this session"):
        super().__init__(message, code="turn_in_progress")


class InputDisabledError(SessionError):
    def __init__(self, message: str):
        super().__init__(message, code="input_disabled")


class AttachmentRejectedError(ChatflowError):
    def __init__(self, message: str, file_name: Optional[str] = None):
        super().__init__("attachment_rejected", message, {"file_name": file_name} if file_name else None)
        self.file_name = file_name


class UploadError(ChatflowError):
    def __init__(self, message: str = "Unable to upload documents", details: Optional[dict[str, Any]] = None):
        super().__init__("upload_error", message, details)


class EventPayloadError(ChatflowError):
    def __init__(self, message: str, raw: Any = None):
        super().__init__("event_payload_error", message, {"raw": raw} if raw is not None else None)
