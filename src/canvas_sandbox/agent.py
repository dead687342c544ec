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
import json
from enum import Enum
from typing import Any, AsyncIterator, Iterable
from uuid import uuid4

import anthropic
from loguru import logger

from canvas_sandbox.config import SandboxConfig
from canvas_sandbox.exceptions import ModelStreamError, ProvisionError
from canvas_sandbox.executor import ToolExecutor
from canvas_sandbox.progress import GlobalLog, ProgressReporter
from canvas_sandbox.prompts import build_system_prompt
from canvas_sandbox.session_manager import DEFAULT_SESSION, SessionCache
from canvas_sandbox.tools import TOOL_DEFINITIONS, dispatch


class TurnState(str, Enum):
    INIT = "init"
    ENSURE_SANDBOX = "ensure_sandbox"
    PROVISIONING = "provisioning"
    REUSING = "reusing"
    STREAMING_MODEL = "streaming_model"
    TOOL_CALL = "tool_call"
    DONE = "done"
    CANCELLED = "cancelled"
    SANDBOX_START_FAILED = "sandbox_start_failed"
    MODEL_ERROR = "model_error"


def _message_text(message: dict[str, Any]) -> str:
    content = message.get("content")
    if isinstance(content, str):
        return content
    parts = content if isinstance(content, list) else message.get("parts") or []
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict) and part.get("type", "text") == "text")


def normalize_history(messages: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Convert client chat messages into model message params.

    Accepts string content, lists of text parts, or UI messages with `parts`.
    Roles other than user/assistant and empty messages are dropped.
    """
    history: list[dict[str, Any]] = []
    for message in messages:
        role = message.get("role")
        if role not in ("user", "assistant"):
            continue
        text = _message_text(message)
        if text:
            history.append({"role": role, "content": text})
    return history


class AgentTurn:
    """One request/response cycle with the model.

    The sandbox is already resolved when a turn exists, so `sandbox_url` can
    be handed to the client before any model output is streamed.
    """

    def __init__(
        self,
        controller: "AgentTurnController",
        history: list[dict[str, Any]],
        executor: ToolExecutor,
        progress: ProgressReporter,
        sandbox_url: str,
        reused: bool,
    ):
        self.turn_id = f"turn_{uuid4().hex}"
        self.controller = controller
        self.history = history
        self.executor = executor
        self.progress = progress
        self.sandbox_url = sandbox_url
        self.reused = reused
        self.state = TurnState.REUSING if reused else TurnState.PROVISIONING
        self.steps = 0
        self._cancelled = asyncio.Event()

    def cancel(self) -> None:
        """Stop streaming and skip any remaining tool calls."""
        logger.info(f"Cancelling turn {self.turn_id}")
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @staticmethod
    def _block_param(block: Any) -> dict[str, Any] | None:
        if block.type == "text":
            return {"type": "text", "text": block.text} if block.text else None
        if block.type == "tool_use":
            return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
        return None

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        """Stream the turn as events: step, text, tool_call, tool_result, done.

        Raises:
            ModelStreamError: If the LLM streaming service fails.
        """
        config = self.controller.config
        client = self.controller.client
        messages = list(self.history)
        system = build_system_prompt(
            self.progress.render_setup_summary(),
            self.sandbox_url,
            echo_url=config.prompt_echo_url,
        )

        try:
            for step in range(1, config.max_steps + 1):
                if self.cancelled:
                    break
                self.steps = step
                self.state = TurnState.STREAMING_MODEL
                yield {"type": "step", "step": step}

                # At least one tool call per turn, then let the model finish.
                tool_choice = {"type": "any"} if step == 1 else {"type": "auto"}
                try:
                    async with client.messages.stream(
                        model=config.model,
                        max_tokens=config.max_tokens,
                        system=system,
                        messages=messages,
                        tools=TOOL_DEFINITIONS,
                        tool_choice=tool_choice,
                    ) as stream:
                        async for event in stream:
                            if self.cancelled:
                                break
                            if event.type == "text":
                                yield {"type": "text", "text": event.text}
                        message = None if self.cancelled else await stream.get_final_message()
                except anthropic.APIError as e:
                    self.state = TurnState.MODEL_ERROR
                    logger.error(f"Model stream failed: {e}")
                    self.progress.append_log(f"[agent] ❌ Model error: {e}")
                    raise ModelStreamError(str(e), getattr(e, "status_code", None)) from e

                if message is None:
                    break

                assistant_content = [p for p in (self._block_param(b) for b in message.content) if p]
                if assistant_content:
                    messages.append({"role": "assistant", "content": assistant_content})

                tool_uses = [b for b in message.content if b.type == "tool_use"]
                for block in message.content:
                    if block.type == "text" and block.text:
                        logger.info(f"[step] Text: {block.text[:100]}...")
                if not tool_uses:
                    self.state = TurnState.DONE
                    break

                self.state = TurnState.TOOL_CALL
                tool_results: list[dict[str, Any]] = []
                for block in tool_uses:
                    if self.cancelled:
                        break
                    logger.info(f"[step] Tool: {block.name}")
                    yield {"type": "tool_call", "id": block.id, "name": block.name, "input": block.input}
                    result = await dispatch(self.executor, block.name, block.input)
                    payload = result.to_payload()
                    yield {"type": "tool_result", "id": block.id, "name": block.name, "result": payload}
                    tool_results.append(
                        {
                            "type": "tool_result",
                            "tool_use_id": block.id,
                            "content": json.dumps(payload),
                            "is_error": not result.success,
                        }
                    )
                    # getSandboxUrl may observe a replacement sandbox
                    if payload.get("url"):
                        self.sandbox_url = payload["url"]

                if self.cancelled:
                    break
                messages.append({"role": "user", "content": tool_results})
            else:
                logger.warning(f"Turn {self.turn_id} reached the step limit ({config.max_steps})")
                self.progress.append_log(f"[agent] ⏹️ Step limit reached ({config.max_steps})")
                self.state = TurnState.DONE

            if self.cancelled:
                self.state = TurnState.CANCELLED

            yield {
                "type": "done",
                "state": self.state.value,
                "steps": self.steps,
                "sandbox_url": self.sandbox_url,
            }
        finally:
            self.controller.turns.pop(self.turn_id, None)


class AgentTurnController:
    """Drives agent turns: ensures a sandbox, then streams the model with tools bound."""

    def __init__(
        self,
        sessions: SessionCache,
        config: SandboxConfig | None = None,
        client: anthropic.AsyncAnthropic | None = None,
        global_log: GlobalLog | None = None,
    ):
        """Initializes the AgentTurnController.

        Args:
            sessions: Session cache used to find or provision sandboxes.
            config: Optional configuration object. If not provided, the cache's is used.
            client: Optional Anthropic client. Created lazily from config if omitted.
            global_log: Log sink shared by all turns. Defaults to the process-wide log.
        """
        self.sessions = sessions
        self.config = config or sessions.config
        self._client = client
        self.global_log = global_log
        self.turns: dict[str, AgentTurn] = {}

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self.config.anthropic_api_key)
        return self._client

    async def handle_turn(
        self, history: Iterable[dict[str, Any]], session_key: str = DEFAULT_SESSION
    ) -> AgentTurn:
        """Resolve the session's sandbox and prepare a turn.

        Raises:
            ProvisionError: If no sandbox could be provisioned.
        """
        progress = ProgressReporter(self.global_log)
        try:
            handle, reused = await self.sessions.get_or_provision(progress, session_key)
        except ProvisionError as e:
            progress.append_log(f"[agent] ❌ Failed to start sandbox ({e.phase.value}): {e}")
            raise

        executor = ToolExecutor(self.sessions, progress, session_key, self.config)
        turn = AgentTurn(self, normalize_history(history), executor, progress, handle.base_url, reused)
        self.turns[turn.turn_id] = turn
        logger.info(f"Turn {turn.turn_id} ready", session=session_key, sandbox_url=handle.base_url, reused=reused)
        return turn

    def cancel(self, turn_id: str) -> bool:
        turn = self.turns.get(turn_id)
        if turn is None:
            return False
        turn.cancel()
        return True
