# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/canvas_sandbox

import asyncio
from typing import Awaitable, Callable, Sequence, TypeVar

from loguru import logger

from canvas_sandbox.config import SandboxConfig
from canvas_sandbox.exceptions import OperationTimeoutError, ProvisionError, is_gone_error
from canvas_sandbox.models import (
    FileWrite,
    InstallPackagesResult,
    RunCommandResult,
    SandboxHandle,
    SandboxUrlResult,
    ToolCallResult,
    ToolStep,
    WriteFilesResult,
)
from canvas_sandbox.progress import ProgressReporter
from canvas_sandbox.session_manager import DEFAULT_SESSION, SessionCache

R = TypeVar("R", bound=ToolCallResult)
T = TypeVar("T")

MAX_ATTEMPTS = 2


class ToolExecutor:
    """Runs tool operations against the session's current sandbox.

    Every operation follows the same protocol: use the cached sandbox (or
    provision one), run, and if the sandbox turns out to be gone, replace it
    and retry exactly once. Errors never cross the tool boundary; they come
    back as failed results so the model can react.
    """

    def __init__(
        self,
        sessions: SessionCache,
        progress: ProgressReporter | None = None,
        session_key: str = DEFAULT_SESSION,
        config: SandboxConfig | None = None,
    ):
        """Initializes the ToolExecutor.

        Args:
            sessions: Session cache holding the current sandbox per key.
            progress: Receives log lines. A fresh reporter is used if omitted.
            session_key: Which session's sandbox to operate on.
            config: Optional configuration object. If not provided, the cache's is used.
        """
        self.sessions = sessions
        self.progress = progress or ProgressReporter()
        self.session_key = session_key
        self.config = config or sessions.config
        self.provider = sessions.provisioner.provider

    def _log(self, line: str) -> None:
        self.progress.append_log(line)

    async def _with_timeout(self, operation: str, awaitable: Awaitable[T]) -> T:
        timeout = self.config.operation_timeout
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise OperationTimeoutError(operation, timeout) from e

    async def _resilient_exec(
        self,
        description: str,
        op: Callable[[SandboxHandle], Awaitable[R]],
        failure: Callable[[ToolStep, str], R],
        attempt: int = 1,
    ) -> R:
        handle = self.sessions.get(self.session_key)
        if handle is None:
            if attempt > 1:
                self._log("[agent] ❌ Sandbox unavailable after initialization attempt.")
                return failure(ToolStep.ERROR, "❌ Sandbox unavailable after initialization attempt.")
            try:
                handle, _ = await self.sessions.get_or_provision(self.progress, self.session_key)
            except ProvisionError as e:
                self._log(f"[agent] ❌ Failed to start sandbox: {e}")
                return failure(ToolStep.SANDBOX_START_FAILED, f"❌ Sandbox start failed: {e}")

        try:
            return await op(handle)
        except Exception as e:
            logger.exception(f"Error {description}")
            self._log(f"[agent] ❌ Error {description}: {e}")

            recoverable = is_gone_error(e) or isinstance(e, OperationTimeoutError)
            if recoverable and attempt < MAX_ATTEMPTS:
                self._log("[agent] ⚠️ Sandbox has stopped. Attempting to start a new sandbox...")
                try:
                    await self.sessions.reprovision(handle, self.progress, self.session_key)
                except ProvisionError as pe:
                    self._log(f"[agent] ❌ Failed to restart sandbox: {pe}")
                    return failure(ToolStep.SANDBOX_RESTART_FAILED, f"❌ Sandbox restart failed: {pe}")

                self._log(f"[agent] 🔁 Retrying {description} in new sandbox...")
                return await self._resilient_exec(description, op, failure, attempt + 1)

            return failure(ToolStep.ERROR, f"❌ Error {description}: {e}")

    async def write_files(self, files: Sequence[FileWrite]) -> WriteFilesResult:
        """Write all files to the project root in one batch."""
        paths = [f.path for f in files]
        file_list = ", ".join(paths)
        self._log(f"[agent] Writing {len(files)} files: {file_list}")

        async def op(handle: SandboxHandle) -> WriteFilesResult:
            await self._with_timeout("writeFiles", self.provider.write_files(handle.id, files))
            self._log(f"[agent] ✅ Successfully wrote: {file_list}")
            return WriteFilesResult(
                success=True,
                message=f"✅ Wrote {len(files)} file(s): {file_list}",
                step=ToolStep.WRITE_FILES,
                files=paths,
            )

        return await self._resilient_exec("writing files", op, WriteFilesResult.failure)

    async def install_packages(self, packages: Sequence[str]) -> InstallPackagesResult:
        """Install packages with one package-manager invocation.

        A nonzero exit code is a failed result, not a retry trigger.
        """
        names = list(packages)
        if not names:
            return InstallPackagesResult(success=False, message="❌ No packages given", step=ToolStep.ERROR)
        joined = ", ".join(names)

        async def op(handle: SandboxHandle) -> InstallPackagesResult:
            self._log(f"[agent] Installing packages: {joined}")
            result = await self._with_timeout(
                "installPackages",
                self.provider.run_command(handle.id, self.config.package_manager, ["install", *names]),
            )
            logger.info(f"{self.config.package_manager} install exit={result.exit_code}")

            if result.exit_code != 0:
                self._log(f"[agent] ❌ Failed to install: {joined}")
                return InstallPackagesResult(
                    success=False,
                    message=f"❌ Failed to install: {joined}",
                    step=ToolStep.ERROR,
                    packages=names,
                    output=result.stdout,
                    exit_code=result.exit_code,
                )

            self._log(f"[agent] ✅ Installed: {joined}")
            return InstallPackagesResult(
                success=True,
                message=f"📦 Installed: {joined}",
                step=ToolStep.INSTALL_PACKAGES,
                packages=names,
                output=result.stdout,
                exit_code=0,
            )

        return await self._resilient_exec("installing packages", op, InstallPackagesResult.failure)

    async def run_command(self, command: str, args: Sequence[str] | None = None) -> RunCommandResult:
        """Run an arbitrary command in the project root."""
        argv = list(args or [])
        display = f"{command} {' '.join(argv)}".strip()

        async def op(handle: SandboxHandle) -> RunCommandResult:
            self._log(f"[agent] Running: {display}")
            result = await self._with_timeout(
                "runCommand",
                self.provider.run_command(handle.id, command, argv),
            )
            logger.info(f"Command exit={result.exit_code}")
            exit_code = result.exit_code if result.exit_code is not None else 0
            return RunCommandResult(
                success=exit_code == 0,
                message=f"⚙️ Ran: {display}",
                step=ToolStep.RUN_COMMAND,
                output=result.stdout,
                stderr=result.stderr,
                exit_code=exit_code,
                url=handle.base_url,
            )

        return await self._resilient_exec("running command", op, RunCommandResult.failure)

    async def get_sandbox_url(self) -> SandboxUrlResult:
        """Read the current sandbox URL. Never provisions."""
        handle = self.sessions.get(self.session_key)
        if handle is None:
            return SandboxUrlResult(success=False, message="❌ No sandbox is running", step=ToolStep.ERROR)
        return SandboxUrlResult(
            success=True,
            message=f"🚀 Sandbox URL: {handle.base_url}",
            step=ToolStep.GET_URL,
            url=handle.base_url,
        )
