# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/canvas_sandbox

"""
canvas-sandbox
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .agent import AgentTurn, AgentTurnController, TurnState
from .config import SandboxConfig
from .exceptions import ModelStreamError, ProvisionError, SandboxGoneError
from .executor import ToolExecutor
from .factory import SandboxFactory
from .models import SandboxHandle, ToolCallResult
from .progress import GlobalLog, ProgressReporter
from .provisioner import Provisioner
from .runtime import SandboxProvider
from .session_manager import SessionCache

__all__ = [
    "AgentTurn",
    "AgentTurnController",
    "TurnState",
    "SandboxConfig",
    "ModelStreamError",
    "ProvisionError",
    "SandboxGoneError",
    "ToolExecutor",
    "SandboxFactory",
    "SandboxHandle",
    "ToolCallResult",
    "GlobalLog",
    "ProgressReporter",
    "Provisioner",
    "SandboxProvider",
    "SessionCache",
]
