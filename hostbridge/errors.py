# -*- coding: utf-8 -*-
"""
errors.py - Error taxonomy for HostBridge
Every failure is converted into a targeted error reply; none of them
terminate a connection.
"""

import errno
from enum import Enum
from typing import Optional


class ErrorCode(Enum):
    """Error codes for categorization"""
    AUTH_FAILED = "auth_failed"
    PROTOCOL_ERROR = "protocol_error"
    SANDBOX_VIOLATION = "sandbox_violation"
    CAPACITY_VIOLATION = "capacity_violation"
    CONFIGURATION_DENIED = "configuration_denied"
    NOT_FOUND = "not_found"
    FILESYSTEM_ERROR = "filesystem_error"
    HOST_ERROR = "host_error"


class BridgeError(Exception):
    """Base error carrying a caller-safe message"""
    code = ErrorCode.PROTOCOL_ERROR
    http_status = 400

    def __init__(self, message: str, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.request_id = request_id

    def to_message(self) -> dict:
        """Render as a wire error object"""
        msg = {
            'type': 'error',
            'error': self.message,
            'code': self.code.value,
        }
        if self.request_id is not None:
            msg['requestId'] = self.request_id
        return msg


class AuthFailure(BridgeError):
    code = ErrorCode.AUTH_FAILED
    http_status = 401


class ProtocolError(BridgeError):
    code = ErrorCode.PROTOCOL_ERROR


class DeviceNotFound(ProtocolError):
    code = ErrorCode.NOT_FOUND

    def __init__(self, identity: str, request_id: Optional[str] = None):
        super().__init__(f"Device not online: {identity}", request_id)
        self.identity = identity


class SandboxViolation(BridgeError):
    """Path escapes the sandbox root. Never carries the resolved path."""
    code = ErrorCode.SANDBOX_VIOLATION

    def __init__(self, message: str = "Path outside sandbox", request_id: Optional[str] = None):
        super().__init__(message, request_id)


class CapacityViolation(BridgeError):
    code = ErrorCode.CAPACITY_VIOLATION
    http_status = 413


class ConfigurationDenied(BridgeError):
    code = ErrorCode.CONFIGURATION_DENIED
    http_status = 403


class FilesystemError(BridgeError):
    code = ErrorCode.FILESYSTEM_ERROR


class PathNotFound(FilesystemError):
    http_status = 404

    def __init__(self, message: str = "Not found", request_id: Optional[str] = None):
        super().__init__(message, request_id)


class HostError(BridgeError):
    """Clipboard or process facility failure"""
    code = ErrorCode.HOST_ERROR


_ERRNO_TEXT = {
    errno.ENOENT: "Not found",
    errno.EACCES: "Permission denied",
    errno.EPERM: "Permission denied",
    errno.ENOTDIR: "Not a directory",
    errno.EISDIR: "Is a directory",
    errno.EEXIST: "Already exists",
    errno.ENOSPC: "No space left on device",
}


def describe_os_error(exc: OSError, expose: bool = False) -> str:
    """Caller-safe text for an OSError. Paths are never included."""
    text = _ERRNO_TEXT.get(exc.errno, "Filesystem error")
    if expose and exc.strerror and exc.strerror != text:
        text = f"{text}: {exc.strerror}"
    return text


def from_os_error(exc: OSError, expose: bool = False,
                  request_id: Optional[str] = None) -> FilesystemError:
    text = describe_os_error(exc, expose)
    if exc.errno == errno.ENOENT:
        return PathNotFound(text, request_id)
    return FilesystemError(text, request_id)
