# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/canvas_sandbox

from typing import Any

from mcp.server.fastmcp import FastMCP

from canvas_sandbox.config import SandboxConfig
from canvas_sandbox.executor import ToolExecutor
from canvas_sandbox.factory import SandboxFactory
from canvas_sandbox.models import FileWrite
from canvas_sandbox.progress import ProgressReporter
from canvas_sandbox.provisioner import Provisioner
from canvas_sandbox.session_manager import SessionCache

_sessions: SessionCache | None = None


def get_sessions() -> SessionCache:
    """Lazily build the session cache so importing this module needs no Docker daemon."""
    global _sessions
    if _sessions is None:
        config = SandboxConfig()
        _sessions = SessionCache(Provisioner(SandboxFactory.get_provider(config), config), config)
    return _sessions


def _executor(session_id: str) -> ToolExecutor:
    return ToolExecutor(get_sessions(), ProgressReporter(), session_id)


# Initialize MCP Server
mcp = FastMCP("canvas-sandbox")


@mcp.tool()  # type: ignore[misc]
async def write_files(session_id: str, files: list[dict[str, str]]) -> dict[str, Any]:
    """
    Write files (path relative to the project root, full contents) into the session's sandbox.
    """
    try:
        writes = [FileWrite.model_validate(f) for f in files]
    except ValueError as e:
        return {"success": False, "message": f"❌ Invalid files: {e!s}", "step": "error"}
    result = await _executor(session_id).write_files(writes)
    return result.to_payload()


@mcp.tool()  # type: ignore[misc]
async def install_packages(session_id: str, packages: list[str]) -> dict[str, Any]:
    """
    Install packages in the session's sandbox.
    """
    result = await _executor(session_id).install_packages(packages)
    return result.to_payload()


@mcp.tool()  # type: ignore[misc]
async def run_command(session_id: str, command: str, args: list[str] | None = None) -> dict[str, Any]:
    """
    Run a command in the session's sandbox project root.
    """
    result = await _executor(session_id).run_command(command, args or [])
    return result.to_payload()


@mcp.tool()  # type: ignore[misc]
async def get_sandbox_url(session_id: str) -> dict[str, Any]:
    """
    Return the URL where the session's app is running. Never starts a sandbox.
    """
    result = await _executor(session_id).get_sandbox_url()
    return result.to_payload()


def main() -> None:
    """Entry point for the MCP server."""
    mcp.run()


if __name__ == "__main__":  # pragma: no cover
    main()
