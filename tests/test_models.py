# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/canvas_sandbox

import pytest
from pydantic import ValidationError

from canvas_sandbox.models import (
    FileWrite,
    InstallPackagesResult,
    ResourceSpec,
    RunCommandResult,
    SandboxHandle,
    ToolStep,
    WriteFilesResult,
)


def test_sandbox_handle_is_frozen() -> None:
    handle = SandboxHandle(id="sbx-1", base_url="https://3000-sbx-1.example.dev")
    assert handle.access_token is None
    assert handle.tunnel_url is None
    with pytest.raises(ValidationError):
        handle.base_url = "https://other"  # type: ignore[misc]


def test_resource_spec_defaults() -> None:
    resources = ResourceSpec()
    assert (resources.vcpus, resources.memory_gib, resources.disk_gib) == (4, 4, 10)


def test_file_write_normalizes_path() -> None:
    assert FileWrite(path="src/./components/../App.tsx", contents="").path == "src/App.tsx"


@pytest.mark.parametrize("path", ["", ".", "..", "/etc/passwd", "../outside.txt", "src/../../x"])
def test_file_write_rejects_escaping_paths(path: str) -> None:
    with pytest.raises(ValidationError, match="project root"):
        FileWrite(path=path, contents="x")


def test_failure_builds_subclass() -> None:
    result = WriteFilesResult.failure(ToolStep.SANDBOX_START_FAILED, "❌ Sandbox start failed: boom")
    assert isinstance(result, WriteFilesResult)
    assert result.success is False
    assert result.files == []


def test_payload_uses_camel_case() -> None:
    result = InstallPackagesResult(
        success=False,
        message="❌ Failed to install: left-pad",
        step=ToolStep.ERROR,
        packages=["left-pad"],
        exit_code=1,
    )
    payload = result.to_payload()
    assert payload == {
        "success": False,
        "message": "❌ Failed to install: left-pad",
        "step": "error",
        "packages": ["left-pad"],
        "output": "",
        "exitCode": 1,
    }


def test_results_are_frozen() -> None:
    result = RunCommandResult(success=True, message="ok", step=ToolStep.RUN_COMMAND, exit_code=0)
    with pytest.raises(ValidationError):
        result.success = False  # type: ignore[misc]
