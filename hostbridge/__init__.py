# -*- coding: utf-8 -*-
"""
hostbridge - Device relay and host integration server
Clipboard relay, peer file relay, sandboxed host files and shell access
"""

from .errors import (
    BridgeError, AuthFailure, ProtocolError, SandboxViolation,
    CapacityViolation, ConfigurationDenied, HostError,
)
from .protocol import MessageType

__version__ = "1.0.0"

__all__ = [
    'BridgeError', 'AuthFailure', 'ProtocolError', 'SandboxViolation',
    'CapacityViolation', 'ConfigurationDenied', 'HostError', 'MessageType',
]
