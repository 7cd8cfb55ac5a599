"""Lifecycle of the core worker process: locate, spawn, watch, terminate."""

from __future__ import annotations

import asyncio
import os
import shutil
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

from loguru import logger

from capslap.config.schema import SidecarConfig
from capslap.sidecar.core.types import ExitStatus, SidecarTransportError

ExitListener = Callable[[ExitStatus], None]


def default_binary_name() -> str:
    return "core.exe" if sys.platform == "win32" else "core"


def default_install_dir() -> Path:
    return Path(__file__).resolve().parents[2]


class ProcessSupervisor:
    """Owns the worker subprocess and reports its exit to listeners."""

    def __init__(self, config: SidecarConfig | None = None):
        self.config = config or SidecarConfig()
        self._proc: asyncio.subprocess.Process | None = None
        self._watch_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._listeners: list[ExitListener] = []
        self.exit_status: ExitStatus | None = None

    @property
    def process(self) -> asyncio.subprocess.Process | None:
        return self._proc

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    def add_exit_listener(self, listener: ExitListener) -> None:
        self._listeners.append(listener)

    def _binary_name(self) -> str:
        return self.config.binary_name.strip() or default_binary_name()

    def candidate_paths(self) -> list[Path]:
        """Locations searched for the worker, in order."""
        if self.config.binary_path.strip():
            return [Path(self.config.binary_path).expanduser()]
        root = self.config.install_path or default_install_dir()
        name = self._binary_name()
        candidates = [
            root / "bin" / name,
            root / "rust" / "target" / "release" / name,
            root / "rust" / "target" / "debug" / name,
        ]
        on_path = shutil.which(name)
        if on_path:
            candidates.append(Path(on_path))
        return candidates

    def requirements_report(self) -> dict[str, Any]:
        """Collect where the worker is looked for and whether it can be launched."""
        candidates = self.candidate_paths()
        found = next((p for p in candidates if p.is_file()), None)
        checks = {
            "binaryFound": found is not None,
            "binaryExecutable": bool(found and os.access(found, os.X_OK)),
            "cwdExists": Path(self.config.cwd).expanduser().is_dir() if self.config.cwd else True,
        }
        suggestions: list[str] = []
        if not checks["binaryFound"]:
            suggestions.append(
                f"Build the worker (cargo build in rust/) or set sidecar.binaryPath; looked for {self._binary_name()}."
            )
        elif not checks["binaryExecutable"]:
            suggestions.append(f"Mark the worker executable: chmod +x {found}")
        if not checks["cwdExists"]:
            suggestions.append(f"Working directory does not exist: {self.config.cwd}")
        return {
            "paths": {
                "binary": str(found) if found else "",
                "candidates": [str(p) for p in candidates],
                "cwd": self.config.cwd,
            },
            "checks": checks,
            "suggestions": suggestions,
        }

    def resolve_binary(self) -> Path:
        for path in self.candidate_paths():
            if path.is_file():
                return path
        raise SidecarTransportError(
            f"worker binary not found: {self._binary_name()}",
            code="BINARY_NOT_FOUND",
            details=self.requirements_report(),
        )

    async def spawn(self) -> asyncio.subprocess.Process:
        if self.running:
            assert self._proc is not None
            return self._proc
        binary = self.resolve_binary()
        env = os.environ.copy()
        env.update(self.config.env)
        stderr = asyncio.subprocess.PIPE if self.config.stderr == "log" else None
        logger.info("Starting sidecar: {} {}", binary, " ".join(self.config.args))
        try:
            proc = await asyncio.create_subprocess_exec(
                str(binary),
                *self.config.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=stderr,
                cwd=self.config.cwd or None,
                env=env,
                limit=self.config.read_limit_bytes,
            )
        except OSError as exc:
            logger.error("Sidecar failed to start: {}", exc)
            raise SidecarTransportError(
                f"failed to start worker {binary}: {exc}",
                code="SPAWN_FAILED",
                details={"binary": str(binary)},
            ) from exc
        if proc.stdin is None or proc.stdout is None:
            raise SidecarTransportError("worker stdio is unavailable", code="SPAWN_FAILED")
        self._proc = proc
        self.exit_status = None
        logger.info("Sidecar started (pid {})", proc.pid)
        self._watch_task = asyncio.create_task(self._watch(proc), name="sidecar-exit-watch")
        if proc.stderr is not None:
            self._stderr_task = asyncio.create_task(self._pump_stderr(proc.stderr), name="sidecar-stderr")
        return proc

    async def _pump_stderr(self, stream: asyncio.StreamReader) -> None:
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                continue
            if not line:
                return
            text = line.decode("utf-8", errors="replace").strip()
            if text:
                logger.info("[sidecar] {}", text)

    async def _watch(self, proc: asyncio.subprocess.Process) -> None:
        returncode = await proc.wait()
        status = ExitStatus.from_returncode(returncode)
        if proc is not self._proc:
            return
        self.exit_status = status
        logger.info("Sidecar exited ({})", status.describe())
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Sidecar exit listener failed")

    async def wait(self) -> ExitStatus | None:
        """Wait until the exit has been observed and listeners have run."""
        if self._watch_task is not None:
            await asyncio.shield(self._watch_task)
        return self.exit_status

    async def terminate(self, timeout: float | None = None) -> ExitStatus | None:
        """Close stdin, then SIGTERM, then SIGKILL if the worker still lingers."""
        proc = self._proc
        if proc is None:
            return self.exit_status
        timeout = self.config.shutdown_timeout if timeout is None else timeout
        if proc.returncode is None:
            if proc.stdin is not None and not proc.stdin.is_closing():
                proc.stdin.close()
            try:
                proc.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(proc.wait(), timeout)
            except asyncio.TimeoutError:
                logger.warning("Sidecar did not exit within {}s, killing", timeout)
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()
        status = await self.wait()
        if self._stderr_task is not None:
            try:
                await asyncio.wait_for(self._stderr_task, timeout=1.0)
            except asyncio.TimeoutError:
                self._stderr_task.cancel()
            self._stderr_task = None
        return status
