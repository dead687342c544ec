# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/canvas_sandbox

from abc import ABC, abstractmethod
from typing import Sequence

from canvas_sandbox.models import CommandResult, FileWrite, PreviewLink, ResourceSpec, TemplateSource


class SandboxProvider(ABC):
    """
    Abstract base class for remote sandbox providers (e.g., Docker).
    Follows the Strategy Pattern.

    Providers raise SandboxGoneError when the referenced sandbox has been
    stopped or removed.
    """

    name: str = "sandbox"

    @abstractmethod
    async def create(
        self,
        template: TemplateSource,
        resources: ResourceSpec,
        timeout_seconds: float,
        port: int,
    ) -> str:
        """Create a sandbox.

        Creates an isolated compute and filesystem environment from the template
        source, with the given resources, idle timeout and exposed port.

        Args:
            template: Git URL or image reference the project comes from.
            resources: vCPU, memory and disk profile.
            timeout_seconds: Idle timeout after which the provider may stop it.
            port: Port to expose.

        Returns:
            str: The provider's sandbox id.

        Raises:
            Exception: If the sandbox cannot be created.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def run_command(
        self,
        sandbox_id: str,
        cmd: str,
        args: Sequence[str] = (),
        *,
        detached: bool = False,
        cwd: str | None = None,
    ) -> CommandResult:
        """Run a command inside the sandbox.

        Args:
            sandbox_id: The sandbox to run in.
            cmd: Executable name.
            args: Arguments passed to the executable.
            detached: Start the command and return without waiting for it.
            cwd: Working directory, defaults to the project root.

        Returns:
            CommandResult: Exit code and output; exit_code is None when detached.

        Raises:
            SandboxGoneError: If the sandbox no longer exists or is stopped.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def write_files(self, sandbox_id: str, files: Sequence[FileWrite]) -> None:
        """Write files relative to the project root in one batch.

        Raises:
            SandboxGoneError: If the sandbox no longer exists or is stopped.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def domain_for(self, sandbox_id: str, port: int) -> PreviewLink:
        """Resolve the externally reachable URL for a port."""
        pass  # pragma: no cover

    @abstractmethod
    async def delete(self, sandbox_id: str) -> None:
        """Delete the sandbox and release its resources."""
        pass  # pragma: no cover
