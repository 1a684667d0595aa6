from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any

from lsplint.core.logger import logger
from lsplint.core.lsp.endpoint import RPCEndpoint
from lsplint.core.lsp.errors import LSPError, ProcessCrashed, ServerStartError

CrashCallback = Callable[[ProcessCrashed], None]

DEFAULT_SHUTDOWN_TIMEOUT = 5.0
DEFAULT_GRACE_PERIOD = 2.0


@dataclass
class ServerProcess:
    process: asyncio.subprocess.Process
    command: list[str]
    capabilities: dict[str, Any] = field(default_factory=dict)
    stopping: bool = False
    stopped: bool = False
    crashed: bool = False
    _tasks: list[asyncio.Task[None]] = field(default_factory=list, repr=False)
    _crash_callbacks: list[CrashCallback] = field(default_factory=list, repr=False)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    @property
    def alive(self) -> bool:
        return self.process.returncode is None

    def on_crash(self, callback: CrashCallback) -> None:
        self._crash_callbacks.append(callback)

    async def wait_for_exit(self, timeout: float) -> bool:
        if not self.alive:
            return True
        try:
            await asyncio.wait_for(self.process.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True


class ProcessSupervisor:
    def __init__(
        self,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
        grace_period: float = DEFAULT_GRACE_PERIOD,
    ) -> None:
        self.shutdown_timeout = shutdown_timeout
        self.grace_period = grace_period

    async def start(
        self,
        command: str,
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        cwd: str | Path | None = None,
    ) -> ServerProcess:
        argv = [command, *args]
        logger.info(f"Starting language server: {' '.join(argv)}")

        process_env = {**os.environ, **env} if env else None
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=process_env,
                cwd=cwd,
            )
        except FileNotFoundError as e:
            raise ServerStartError(argv, "executable not found") from e
        except OSError as e:
            raise ServerStartError(argv, str(e)) from e

        server = ServerProcess(process=process, command=argv)
        server._tasks.append(
            asyncio.create_task(self._read_stderr(server), name="lsp-stderr")
        )
        server._tasks.append(
            asyncio.create_task(self._monitor(server), name="lsp-monitor")
        )
        logger.debug(f"Language server started with pid {process.pid}")
        return server

    async def stop(self, server: ServerProcess, endpoint: RPCEndpoint | None = None) -> None:
        if server.stopped or server.stopping:
            return
        server.stopping = True

        try:
            if endpoint is not None and server.alive and not endpoint.closed:
                await self._request_shutdown(endpoint)

            if not await server.wait_for_exit(self.grace_period):
                logger.debug("Language server did not exit, terminating")
                self._signal(server, "terminate")
                if not await server.wait_for_exit(self.grace_period):
                    logger.warning("Language server ignored SIGTERM, killing it")
                    self._signal(server, "kill")
                    await server.process.wait()
        finally:
            if endpoint is not None:
                await endpoint.close()
            for task in server._tasks:
                task.cancel()
            await asyncio.gather(*server._tasks, return_exceptions=True)
            server._tasks.clear()
            server.stopped = True
            logger.info(f"Language server stopped (exit code: {server.returncode})")

    async def _request_shutdown(self, endpoint: RPCEndpoint) -> None:
        try:
            await endpoint.request("shutdown", timeout=self.shutdown_timeout)
        except LSPError as e:
            logger.warning(f"Error shutting down language server: {e}")
        # Still asked to exit when shutdown failed
        try:
            await endpoint.notify("exit")
        except LSPError as e:
            logger.warning(f"Error sending exit to language server: {e}")

    def _signal(self, server: ServerProcess, action: str) -> None:
        try:
            getattr(server.process, action)()
        except ProcessLookupError:
            pass

    async def _monitor(self, server: ServerProcess) -> None:
        returncode = await server.process.wait()
        if server.stopping:
            logger.debug(f"Language server exited with code {returncode}")
            return

        server.crashed = True
        logger.warning(f"Language server exited unexpectedly with code {returncode}")
        crash = ProcessCrashed(returncode)
        for callback in server._crash_callbacks:
            try:
                callback(crash)
            except Exception:
                logger.exception("Language server crash callback failed")

    async def _read_stderr(self, server: ServerProcess) -> None:
        stderr = server.process.stderr
        if stderr is None:
            return

        while line := await stderr.readline():
            line_str = line.decode("utf-8", errors="replace").strip()
            if line_str:
                logger.debug(f"LSP Server stderr: {line_str}")
