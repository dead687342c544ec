# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/canvas_sandbox

from enum import Enum

# Substrings that mark a foreign exception as "sandbox no longer available".
GONE_MARKERS = ("410", "sandbox_stopped", "no longer available")


class ProvisionPhase(str, Enum):
    CREATE = "create"
    INSTALL = "install"
    START = "start"
    EXPOSE = "expose"
    HEALTH_CHECK = "health_check"


class SandboxError(Exception):
    """Base class for all sandbox orchestration errors."""


class ProvisionError(SandboxError):
    """A cold start failed.

    Attributes:
        phase: The provisioning phase that failed.
        sandbox_id: Id of the partially created sandbox, if one exists.
    """

    def __init__(self, phase: ProvisionPhase, message: str, sandbox_id: str | None = None):
        super().__init__(message)
        self.phase = phase
        self.sandbox_id = sandbox_id


class SandboxGoneError(SandboxError):
    """The referenced sandbox has been stopped or deleted by the provider."""

    def __init__(self, sandbox_id: str, detail: str = "sandbox_stopped"):
        super().__init__(f"Sandbox {sandbox_id} is no longer available ({detail})")
        self.sandbox_id = sandbox_id


class OperationTimeoutError(SandboxError):
    """A sandbox operation exceeded the caller-side timeout."""

    def __init__(self, operation: str, timeout: float):
        super().__init__(f"{operation} exceeded {timeout} seconds limit")
        self.operation = operation
        self.timeout = timeout


class ModelStreamError(SandboxError):
    """The LLM streaming service failed."""

    def __init__(self, detail: str, status_code: int | None = None):
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


def is_gone_error(error: BaseException) -> bool:
    """Return True if the error means the sandbox is no longer usable.

    Providers raise SandboxGoneError directly. Anything else is classified by
    its message so that errors from foreign SDKs still trigger a re-provision.
    """
    if isinstance(error, SandboxGoneError):
        return True
    message = str(error).lower()
    return any(marker in message for marker in GONE_MARKERS)
