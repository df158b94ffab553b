# -*- coding: utf-8 -*-
"""
protocol.py - Wire protocol shared by the relay server and clients
One JSON object per WebSocket text frame, discriminated by "type".
"""

import json
import time
from enum import Enum
from typing import Any, Dict, Optional, Union

HOST_IDENTITY = "host"

# Close code/reason sent to a connection whose identity was taken over
REPLACED_CLOSE_CODE = 4000
REPLACED_CLOSE_REASON = "Replaced"


class MessageType(str, Enum):
    """Message kinds"""
    AUTH = "auth"
    ACK = "ack"
    ERROR = "error"
    CLIPBOARD_UPDATE = "clipboard_update"
    CLIPBOARD_REQUEST = "clipboard_request"
    CLIPBOARD_RESPONSE = "clipboard_response"
    FILE_SEND_INIT = "file_send_init"
    FILE_CHUNK = "file_chunk"
    FILE_COMPLETE = "file_complete"
    FILE_CANCEL = "file_cancel"
    PRESENCE = "presence"
    DEVICE_LIST = "device_list"

    # Host integration
    HOST_CLIPBOARD_UPDATE = "host_clipboard_update"
    HOST_CLIPBOARD_SET = "host_clipboard_set"
    FS_LIST = "fs_list"
    FS_LIST_RESULT = "fs_list_result"
    SHELL_RUN = "shell_run"
    SHELL_OUTPUT = "shell_output"
    SHELL_DONE = "shell_done"

    @classmethod
    def lookup(cls, value: Any) -> Optional['MessageType']:
        try:
            return cls(value)
        except ValueError:
            return None


def now_ms() -> int:
    """Epoch timestamp in milliseconds"""
    return int(time.time() * 1000)


def safe_parse(raw: Union[str, bytes]) -> Optional[Dict[str, Any]]:
    """Decode a frame; None for anything that is not a JSON object"""
    try:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode('utf-8')
        data = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(data, dict):
        return None
    return data


def encode(msg: Dict[str, Any]) -> str:
    if isinstance(msg.get('type'), MessageType):
        msg = dict(msg, type=msg['type'].value)
    return json.dumps(msg, ensure_ascii=False)


def error_message(text: str, request_id: Optional[str] = None) -> Dict[str, Any]:
    msg = {'type': MessageType.ERROR.value, 'error': text}
    if request_id is not None:
        msg['requestId'] = request_id
    return msg
