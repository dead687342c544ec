# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/canvas_sandbox

import posixpath
from enum import Enum
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class SandboxHandle(BaseModel):
    """Caller-visible reference to a provisioned sandbox.

    The base URL is only meaningful while the sandbox is running. The provider
    may stop the sandbox at any time (idle timeout), after which the handle is
    dangling and consumers find out through a gone error.

    Attributes:
        id: The provider's identity for the sandbox.
        base_url: Network-reachable address of the sandbox's exposed port.
        access_token: Optional credential required by the provider's proxy.
        tunnel_url: Tunnel address reported by the in-sandbox agent, if any.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    base_url: str
    access_token: str | None = None
    tunnel_url: str | None = None


class FileWrite(BaseModel):
    """A single file to write, relative to the sandbox project root."""

    path: str
    contents: str

    @field_validator("path")
    @classmethod
    def _relative_to_root(cls, value: str) -> str:
        stripped = value.strip()
        normalized = posixpath.normpath(stripped) if stripped else ""
        if normalized in ("", ".", "..") or stripped.startswith("/") or normalized.startswith("../"):
            raise ValueError(f"Path must stay inside the project root: {value!r}")
        return normalized


class ResourceSpec(BaseModel):
    """Fixed resource profile for a sandbox."""

    model_config = ConfigDict(frozen=True)

    vcpus: int = 4
    memory_gib: int = 4
    disk_gib: int = 10


class TemplateSource(BaseModel):
    """Where a new sandbox gets its project from."""

    model_config = ConfigDict(frozen=True)

    type: Literal["git", "image"]
    url: str


class CommandResult(BaseModel):
    """Outcome of a command run inside a sandbox.

    `exit_code` is None for detached launches, which are not waited on.
    """

    exit_code: int | None
    stdout: str = ""
    stderr: str = ""


class PreviewLink(BaseModel):
    """Externally reachable URL for a sandbox port."""

    url: str
    token: str | None = None


class ToolStep(str, Enum):
    WRITE_FILES = "write_files"
    INSTALL_PACKAGES = "install_packages"
    RUN_COMMAND = "run_command"
    GET_URL = "get_url"
    ERROR = "error"
    SANDBOX_START_FAILED = "sandbox_start_failed"
    SANDBOX_RESTART_FAILED = "sandbox_restart_failed"


ResultT = TypeVar("ResultT", bound="ToolCallResult")


class ToolCallResult(BaseModel):
    """Terminal result of one tool invocation.

    Results are frozen: a retry always produces a new object.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    success: bool
    message: str
    step: ToolStep

    @classmethod
    def failure(cls: type[ResultT], step: ToolStep, message: str) -> ResultT:
        return cls(success=False, message=message, step=step)

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the LLM tool boundary (camelCase keys)."""
        return self.model_dump(mode="json", by_alias=True)


class WriteFilesResult(ToolCallResult):
    files: list[str] = Field(default_factory=list)


class InstallPackagesResult(ToolCallResult):
    packages: list[str] = Field(default_factory=list)
    output: str = ""
    exit_code: int | None = None


class RunCommandResult(ToolCallResult):
    output: str = ""
    stderr: str = ""
    exit_code: int = 1
    url: str = ""


class SandboxUrlResult(ToolCallResult):
    url: str = ""
