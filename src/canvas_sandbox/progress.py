# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/canvas_sandbox

"""Human-readable progress for provisioning and tool execution."""

from collections import deque

from loguru import logger

DEFAULT_LOG_CAPACITY = 500


class GlobalLog:
    """Process-wide append-only log with a fixed capacity.

    Once capacity is exceeded the oldest entries are evicted first.
    """

    def __init__(self, capacity: int = DEFAULT_LOG_CAPACITY):
        if capacity <= 0:
            raise ValueError("Log capacity must be positive")
        self.capacity = capacity
        self._entries: deque[str] = deque(maxlen=capacity)

    def append(self, line: str) -> None:
        self._entries.append(line)

    def tail(self, n: int | None = None) -> list[str]:
        """Return the last `n` entries (all of them if `n` is None), oldest first."""
        entries = list(self._entries)
        if n is None:
            return entries
        if n <= 0:
            return []
        return entries[-n:]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


GLOBAL_LOG = GlobalLog()


class ProgressReporter:
    """Collects setup steps for one turn and forwards log lines to the global log.

    Setup steps end up verbatim in the model's system prompt. Log lines go to
    loguru and to the shared GlobalLog for tailing.
    """

    def __init__(self, global_log: GlobalLog | None = None):
        self.global_log = global_log if global_log is not None else GLOBAL_LOG
        self.setup_steps: list[str] = []

    def append_setup_step(self, step: str) -> None:
        self.setup_steps.append(step)

    def append_log(self, line: str) -> None:
        logger.info(line)
        self.global_log.append(line)

    def report(self, step: str, line: str | None = None) -> None:
        """Record a setup step and its log line in one go."""
        self.append_setup_step(step)
        self.append_log(line if line is not None else step)

    def render_setup_summary(self) -> str:
        return "\n".join(f"- {step}" for step in self.setup_steps)

    def tail_logs(self, n: int | None = None) -> list[str]:
        return self.global_log.tail(n)
