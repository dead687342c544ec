import pytest

from canvas_sandbox.exceptions import (
    OperationTimeoutError,
    ProvisionError,
    ProvisionPhase,
    SandboxGoneError,
    is_gone_error,
)


def test_gone_error_message() -> None:
    error = SandboxGoneError("sbx-1")
    assert str(error) == "Sandbox sbx-1 is no longer available (sandbox_stopped)"
    assert error.sandbox_id == "sbx-1"


@pytest.mark.parametrize(
    "error",
    [
        SandboxGoneError("sbx-1", "not found"),
        RuntimeError("Request failed with status 410"),
        RuntimeError("SANDBOX_STOPPED"),
        RuntimeError("sandbox is no longer available"),
    ],
)
def test_is_gone_error_matches(error: BaseException) -> None:
    assert is_gone_error(error)


@pytest.mark.parametrize(
    "error",
    [
        RuntimeError("connection reset"),
        OperationTimeoutError("writeFiles", 120),
        ProvisionError(ProvisionPhase.CREATE, "quota exceeded"),
    ],
)
def test_is_gone_error_rejects(error: BaseException) -> None:
    assert not is_gone_error(error)


def test_provision_error_carries_phase_and_id() -> None:
    error = ProvisionError(ProvisionPhase.INSTALL, "Installing packages failed", "sbx-2")
    assert error.phase is ProvisionPhase.INSTALL
    assert error.sandbox_id == "sbx-2"
