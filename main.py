# -*- coding: utf-8 -*-
"""
HostBridge - Device relay with host clipboard, file and shell access
=====================================================================

Trusted devices exchange clipboard text and stream files to each other
over one WebSocket connection each, and browse, upload and download
files inside a sandboxed directory of the host.

Features:
- Clipboard relay between devices, plus host clipboard broadcast
- Peer-to-peer file relay with per-transfer size accounting
- Sandboxed host file API (list / download / upload)
- Optional whitelisted shell commands on the host

Usage:
    python main.py

Configuration is read from config.json, .env and the environment
(SERVER_TOKEN, ROOT_DIR, ALLOW_SHELL, ...).
"""

from hostbridge.app import main

if __name__ == "__main__":
    main()
