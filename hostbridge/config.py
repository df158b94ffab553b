# -*- coding: utf-8 -*-
"""
config.py - Configuration management for HostBridge
Handles network, sandbox, transfer and host integration settings.
Values come from defaults, then config.json, then the environment (.env aware).
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, asdict, field, fields
from typing import List, Optional

from dotenv import load_dotenv

# Application directories
APP_NAME = "HostBridge"
APP_DIR = Path(os.environ.get("APPDATA", Path.home() / ".config")) / APP_NAME
CONFIG_FILE = APP_DIR / "config.json"

DEFAULT_TOKEN = "CHANGE_ME_TOKEN"

# Environment variable -> (field name, parser)
_ENV_FIELDS = {
    "HOST": ("host", str),
    "PORT": ("server_port", int),
    "API_PORT": ("api_port", int),
    "SERVER_TOKEN": ("token", str),
    "MAX_FILE_SIZE": ("max_file_size", int),
    "MAX_CHUNK_SIZE": ("max_chunk_size", int),
    "ROOT_DIR": ("root_dir", str),
    "ALLOW_REMOTE_CLIPBOARD_SET": ("allow_remote_clipboard_set", "bool"),
    "ALLOW_SHELL": ("allow_shell", "bool"),
    "SHELL_WHITELIST": ("shell_whitelist", "list"),
    "CLIPBOARD_INTERVAL_MS": ("clipboard_interval_ms", int),
    "MAX_SHELL_PROCESSES": ("max_shell_processes", int),
    "EXPOSE_ERROR_DETAILS": ("expose_error_details", "bool"),
}


def parse_bool(value: str) -> bool:
    """Only the literal "true" enables a flag"""
    return value.strip().lower() == "true"


def parse_list(value: str) -> List[str]:
    """Parse a comma separated list, dropping blanks"""
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Config:
    """Application configuration dataclass"""
    # Network settings
    host: str = "localhost"
    server_port: int = 8443
    api_port: int = 8444

    # Security
    token: str = DEFAULT_TOKEN
    expose_error_details: bool = False

    # Transfer settings
    max_file_size: int = 500 * 1024 * 1024  # 500MB
    max_chunk_size: int = 64 * 1024  # decoded bytes per file_chunk

    # Sandbox
    root_dir: str = field(default_factory=lambda: str(Path.home()))

    # Host integration
    allow_remote_clipboard_set: bool = False
    allow_shell: bool = False
    shell_whitelist: List[str] = field(default_factory=list)
    max_shell_processes: int = 4
    clipboard_watch_enabled: bool = True
    clipboard_interval_ms: int = 2000

    def __post_init__(self):
        self.root_dir = str(Path(self.root_dir).expanduser().resolve())

    @property
    def uses_default_token(self) -> bool:
        return self.token == DEFAULT_TOKEN

    def save(self, path: Optional[Path] = None):
        """Save configuration to file"""
        path = Path(path) if path else CONFIG_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(asdict(self), f, indent=2, ensure_ascii=False)

    @classmethod
    def load(cls, path: Optional[Path] = None, environ: Optional[dict] = None) -> 'Config':
        """Load configuration from file, then apply environment overrides"""
        path = Path(path) if path else CONFIG_FILE
        known = {f.name for f in fields(cls)}
        values = {}

        if path.exists():
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    values = {k: v for k, v in data.items() if k in known}
            except (OSError, ValueError):
                values = {}

        if environ is None:
            load_dotenv()
            environ = os.environ
        values.update(_env_overrides(environ))
        return cls(**values)


def _env_overrides(environ) -> dict:
    overrides = {}
    for env_name, (field_name, parser) in _ENV_FIELDS.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        if parser == "bool":
            overrides[field_name] = parse_bool(raw)
        elif parser == "list":
            overrides[field_name] = parse_list(raw)
        else:
            try:
                overrides[field_name] = parser(raw)
            except ValueError:
                continue
    return overrides


# Global config instance
config = Config.load()
