"""Tool schemas offered to the model and dispatch onto the ToolExecutor."""

from typing import Any

from loguru import logger
from pydantic import ValidationError

from canvas_sandbox.executor import ToolExecutor
from canvas_sandbox.models import FileWrite, ToolCallResult, ToolStep

WRITE_FILES = "writeFiles"
INSTALL_PACKAGES = "installPackages"
RUN_COMMAND = "runCommand"
GET_SANDBOX_URL = "getSandboxUrl"

TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "name": WRITE_FILES,
        "description": (
            "Write or update files in the React project sandbox. "
            "Use this to create components, modify App.jsx, add new features, etc."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "files": {
                    "type": "array",
                    "description": "Array of files to write",
                    "items": {
                        "type": "object",
                        "properties": {
                            "path": {
                                "type": "string",
                                "description": (
                                    "File path relative to project root "
                                    "(e.g., 'src/App.jsx', 'src/components/Header.jsx')"
                                ),
                            },
                            "contents": {"type": "string", "description": "Complete file contents"},
                        },
                        "required": ["path", "contents"],
                    },
                }
            },
            "required": ["files"],
        },
    },
    {
        "name": INSTALL_PACKAGES,
        "description": "Install npm packages in the React project",
        "input_schema": {
            "type": "object",
            "properties": {
                "packages": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Package names to install",
                }
            },
            "required": ["packages"],
        },
    },
    {
        "name": RUN_COMMAND,
        "description": "Run a command in the sandbox (e.g., for testing, checking file structure, etc.)",
        "input_schema": {
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "Command to run"},
                "args": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Command arguments",
                },
            },
            "required": ["command"],
        },
    },
    {
        "name": GET_SANDBOX_URL,
        "description": "Get the URL where the React app is running",
        "input_schema": {"type": "object", "properties": {}},
    },
]

TOOL_NAMES = frozenset(tool["name"] for tool in TOOL_DEFINITIONS)


async def dispatch(executor: ToolExecutor, name: str, tool_input: dict[str, Any] | None) -> ToolCallResult:
    """Invoke the executor operation behind a tool call.

    Malformed input and unknown tools come back as failed results rather
    than exceptions, like every other tool failure.
    """
    args = tool_input or {}
    try:
        if name == WRITE_FILES:
            files = [FileWrite.model_validate(f) for f in args.get("files") or []]
            if not files:
                return ToolCallResult.failure(ToolStep.ERROR, "❌ No files given")
            return await executor.write_files(files)
        if name == INSTALL_PACKAGES:
            return await executor.install_packages([str(p) for p in args.get("packages") or []])
        if name == RUN_COMMAND:
            command = args.get("command")
            if not command:
                return ToolCallResult.failure(ToolStep.ERROR, "❌ No command given")
            return await executor.run_command(str(command), [str(a) for a in args.get("args") or []])
        if name == GET_SANDBOX_URL:
            return await executor.get_sandbox_url()
    except ValidationError as e:
        logger.warning(f"Invalid input for tool {name}: {e}")
        return ToolCallResult.failure(ToolStep.ERROR, f"❌ Invalid input for {name}: {e.errors()[0]['msg']}")

    return ToolCallResult.failure(ToolStep.ERROR, f"❌ Unknown tool: {name}")
