# -*- coding: utf-8 -*-
"""
host_integration.py - Host integration security boundary
Sandboxed filesystem access, host clipboard pass-through and constrained
process spawning. Every filesystem-facing operation goes through
Sandbox.resolve_path first.
"""

import asyncio
import codecs
import os
import shlex
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Set

import pyperclip

from .config import Config, config as default_config
from .errors import (
    CapacityViolation, ConfigurationDenied, FilesystemError, HostError,
    PathNotFound, ProtocolError, SandboxViolation, from_os_error,
)

READ_CHUNK_SIZE = 4096

# cmd.exe built-ins that have no executable of their own
WINDOWS_BUILTINS = ("dir", "cd", "copy", "move", "del", "type", "echo", "cls", "md", "rd")

OutputCallback = Callable[[str, str], Awaitable[None]]
ExitCallback = Callable[[int], Awaitable[None]]


class Sandbox:
    """
    Resolves caller-supplied relative paths against a fixed root and
    fails closed on anything that would escape it.
    """

    def __init__(self, root: str, expose_errors: bool = False):
        self.root = Path(os.path.realpath(root))
        self.expose_errors = expose_errors

    def _contains(self, path: str) -> bool:
        root = str(self.root)
        if path == root:
            return True
        return path.startswith(root.rstrip(os.sep) + os.sep)

    def resolve_path(self, rel: Optional[str]) -> Path:
        """
        Resolve rel inside the sandbox.

        The lexical check runs before any filesystem access, so ".."
        escapes and absolute overrides are rejected without touching the
        disk. Symlinks are then resolved and checked again.
        """
        if rel is None or rel == "":
            rel = "."
        if not isinstance(rel, str) or "\x00" in rel:
            raise SandboxViolation()

        lexical = os.path.normpath(os.path.join(str(self.root), rel))
        if not self._contains(lexical):
            raise SandboxViolation()

        real = os.path.realpath(lexical)
        if not self._contains(real):
            raise SandboxViolation()
        return Path(real)

    def list_directory(self, rel: Optional[str] = ".") -> dict:
        """Entry names and kinds of a sandboxed directory, unsorted"""
        rel = rel or "."
        abs_path = self.resolve_path(rel)
        try:
            if not abs_path.is_dir():
                if not abs_path.exists():
                    raise PathNotFound()
                raise FilesystemError("Not a directory")
            entries = []
            with os.scandir(abs_path) as it:
                for entry in it:
                    entries.append({
                        'name': entry.name,
                        'type': 'dir' if entry.is_dir() else 'file',
                    })
        except OSError as e:
            raise from_os_error(e, self.expose_errors)
        return {'path': rel, 'entries': entries}

    def resolve_file(self, rel: Optional[str]) -> Path:
        """Resolve a path that must name an existing regular file"""
        if not rel:
            raise ProtocolError("path required")
        abs_path = self.resolve_path(rel)
        if not abs_path.exists():
            raise PathNotFound()
        if not abs_path.is_file():
            raise FilesystemError("Not a file")
        return abs_path

    def ensure_directory(self, rel: Optional[str]) -> Path:
        """Resolve an upload destination, creating it when absent"""
        abs_path = self.resolve_path(rel or ".")
        try:
            if not abs_path.exists():
                abs_path.mkdir(parents=True, exist_ok=True)
            if not abs_path.is_dir():
                raise FilesystemError("Destination not a directory")
        except OSError as e:
            raise from_os_error(e, self.expose_errors)
        return abs_path

    @staticmethod
    def safe_filename(name: Optional[str]) -> str:
        """Reduce an uploaded filename to a bare name"""
        base = (name or "").replace("\\", "/").split("/")[-1]
        if base in ("", ".", "..") or "\x00" in base:
            raise SandboxViolation("Invalid filename")
        return base


class ProcessSpawner:
    """Spawns a child process with piped stdout/stderr"""

    async def spawn(self, command: str, args: List[str], cwd: str) -> asyncio.subprocess.Process:
        raise NotImplementedError


class PosixSpawner(ProcessSpawner):
    """Runs everything through /bin/sh so PATH lookup applies uniformly"""

    async def spawn(self, command, args, cwd):
        line = " ".join(shlex.quote(part) for part in [command, *args])
        return await asyncio.create_subprocess_shell(
            line,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
        )


class WindowsSpawner(ProcessSpawner):
    """cmd.exe built-ins go through "cmd /c", the rest through the shell"""

    async def spawn(self, command, args, cwd):
        base = os.path.basename(command).lower()
        if base in WINDOWS_BUILTINS:
            return await asyncio.create_subprocess_exec(
                "cmd", "/c", command, *args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
            )
        return await asyncio.create_subprocess_shell(
            subprocess.list2cmdline([command, *args]),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
        )


def select_spawner(platform: Optional[str] = None) -> ProcessSpawner:
    platform = platform or sys.platform
    if platform == "win32":
        return WindowsSpawner()
    return PosixSpawner()


async def stream_chunks(stream: Optional[asyncio.StreamReader]) -> AsyncIterator[str]:
    """Yield decoded text as it arrives; chunk boundaries are not lines"""
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
    while True:
        data = await stream.read(READ_CHUNK_SIZE)
        if not data:
            tail = decoder.decode(b"", final=True)
            if tail:
                yield tail
            return
        text = decoder.decode(data)
        if text:
            yield text


@dataclass(eq=False)
class ShellProcess:
    """A running command and the coroutines it reports to"""
    request_id: Optional[str]
    command: str
    process: asyncio.subprocess.Process
    on_output: OutputCallback
    on_exit: ExitCallback
    task: Optional[asyncio.Task] = field(default=None, repr=False)
    exit_code: Optional[int] = None

    async def _forward(self, stream: Optional[asyncio.StreamReader], label: str):
        async for text in stream_chunks(stream):
            await self.on_output(label, text)

    async def pump(self) -> int:
        """Deliver output as it arrives, then the exit code exactly once"""
        await asyncio.gather(
            self._forward(self.process.stdout, 'stdout'),
            self._forward(self.process.stderr, 'stderr'),
        )
        self.exit_code = await self.process.wait()
        await self.on_exit(self.exit_code)
        return self.exit_code

    def kill(self):
        if self.process.returncode is None:
            try:
                self.process.kill()
            except ProcessLookupError:
                pass


class HostIntegration:
    """
    Host-side capabilities exposed to authenticated devices.
    Owns the sandbox, the clipboard facility and running shell processes.
    """

    def __init__(
        self,
        cfg: Optional[Config] = None,
        spawner: Optional[ProcessSpawner] = None,
        on_log: Optional[Callable[[str], None]] = None,
    ):
        self.config = cfg or default_config
        self.sandbox = Sandbox(self.config.root_dir, self.config.expose_error_details)
        self.spawner = spawner or select_spawner()
        self.on_log = on_log or (lambda x: None)
        self._processes: Set[ShellProcess] = set()

    def _log(self, message: str):
        self.on_log(f"[HOST] {message}")

    # Clipboard

    async def read_clipboard(self) -> str:
        try:
            text = await asyncio.to_thread(pyperclip.paste)
        except pyperclip.PyperclipException as e:
            raise HostError(f"Clipboard unavailable: {e}")
        return text or ""

    async def write_clipboard(self, text: str):
        try:
            await asyncio.to_thread(pyperclip.copy, text)
        except pyperclip.PyperclipException as e:
            raise HostError(f"Clipboard unavailable: {e}")

    # Filesystem

    def resolve_path(self, rel: Optional[str]) -> Path:
        return self.sandbox.resolve_path(rel)

    def list_directory(self, rel: Optional[str] = ".") -> dict:
        return self.sandbox.list_directory(rel)

    # Processes

    @property
    def running_processes(self) -> int:
        return len(self._processes)

    def check_command(self, command: str):
        """Fail closed before anything is spawned"""
        if not self.config.allow_shell:
            raise ConfigurationDenied("Shell disabled")
        if not isinstance(command, str) or not command.strip():
            raise ProtocolError("Invalid command")
        whitelist = self.config.shell_whitelist
        if whitelist and os.path.basename(command) not in whitelist:
            raise ConfigurationDenied("Command not allowed")

    async def run_command(
        self,
        command: str,
        args: List[str],
        on_output: OutputCallback,
        on_exit: ExitCallback,
        request_id: Optional[str] = None,
    ) -> ShellProcess:
        """
        Spawn command in the sandbox root and start streaming its output.

        Raises ConfigurationDenied, CapacityViolation or HostError without
        spawning anything.
        """
        self.check_command(command)
        if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
            raise ProtocolError("Invalid args")
        if len(self._processes) >= self.config.max_shell_processes:
            raise CapacityViolation("Too many running processes")

        try:
            process = await self.spawner.spawn(command, args, str(self.sandbox.root))
        except OSError as e:
            raise HostError(f"Failed to start command: {e.strerror or 'spawn error'}")

        shell = ShellProcess(
            request_id=request_id,
            command=command,
            process=process,
            on_output=on_output,
            on_exit=on_exit,
        )
        self._processes.add(shell)
        shell.task = asyncio.create_task(self._supervise(shell))
        self._log(f"Started '{os.path.basename(command)}' (request {request_id})")
        return shell

    async def _supervise(self, shell: ShellProcess):
        try:
            code = await shell.pump()
            self._log(f"'{os.path.basename(shell.command)}' exited with {code}")
        except Exception as e:
            self._log(f"Process output error: {e}")
            shell.kill()
        finally:
            self._processes.discard(shell)

    async def shutdown(self):
        """Kill running processes and wait for their pumps to finish"""
        shells = list(self._processes)
        for shell in shells:
            shell.kill()
        tasks = [s.task for s in shells if s.task]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

