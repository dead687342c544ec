import asyncio
from typing import Any, Sequence

import pytest

from canvas_sandbox.exceptions import SandboxGoneError
from canvas_sandbox.executor import ToolExecutor
from canvas_sandbox.models import CommandResult, FileWrite, SandboxHandle, ToolStep
from canvas_sandbox.progress import ProgressReporter
from canvas_sandbox.session_manager import SessionCache

from conftest import FakeProvider


@pytest.fixture
def executor(sessions: SessionCache, progress: ProgressReporter) -> ToolExecutor:
    return ToolExecutor(sessions, progress, "chat-1")


FILES = [FileWrite(path="src/App.tsx", contents="export default () => null"), FileWrite(path="src/x.css", contents="")]


@pytest.mark.asyncio
async def test_get_sandbox_url_reuses_cached_handle(
    executor: ToolExecutor, sessions: SessionCache, provider: FakeProvider
) -> None:
    handle = SandboxHandle(id="sbx-cached", base_url="https://3000-sbx-cached.example.dev")
    sessions.set(handle, "chat-1")

    first = await executor.get_sandbox_url()
    second = await executor.get_sandbox_url()

    assert first.url == second.url == handle.base_url
    assert first.to_payload() == second.to_payload()
    assert first.step is ToolStep.GET_URL
    assert provider.calls == []


@pytest.mark.asyncio
async def test_get_sandbox_url_after_provision_is_stable(
    executor: ToolExecutor, sessions: SessionCache, provider: FakeProvider, progress: ProgressReporter
) -> None:
    handle, _ = await sessions.get_or_provision(progress, "chat-1")
    calls_after_provision = len(provider.calls)

    urls = [(await executor.get_sandbox_url()).url for _ in range(2)]

    assert urls == [handle.base_url, handle.base_url]
    assert len(provider.calls) == calls_after_provision


@pytest.mark.asyncio
async def test_get_sandbox_url_never_provisions(executor: ToolExecutor, provider: FakeProvider) -> None:
    result = await executor.get_sandbox_url()

    assert result.success is False
    assert result.step is ToolStep.ERROR
    assert provider.count("create") == 0


@pytest.mark.asyncio
async def test_write_files_provisions_on_empty_cache(executor: ToolExecutor, provider: FakeProvider) -> None:
    result = await executor.write_files(FILES)

    assert result.success is True
    assert result.step is ToolStep.WRITE_FILES
    assert result.files == ["src/App.tsx", "src/x.css"]
    assert provider.files["sbx-1"]["src/App.tsx"] == "export default () => null"


@pytest.mark.asyncio
async def test_write_files_retries_once_in_new_sandbox(
    executor: ToolExecutor, sessions: SessionCache, provider: FakeProvider, progress: ProgressReporter
) -> None:
    await sessions.get_or_provision(progress, "chat-1")
    provider.failures["write_files"] = [RuntimeError("Request failed with status code 410")]

    result = await executor.write_files(FILES)

    assert result.success is True
    assert provider.count("create") == 2
    writes = [args for name, args in provider.calls if name == "write_files"]
    assert writes == [("sbx-1", ["src/App.tsx", "src/x.css"]), ("sbx-2", ["src/App.tsx", "src/x.css"])]
    assert sessions.get("chat-1").id == "sbx-2"
    assert "sbx-1" in provider.deleted
    assert "[agent] 🔁 Retrying writing files in new sandbox..." in progress.tail_logs()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "call",
    [
        lambda ex: ex.write_files(FILES),
        lambda ex: ex.install_packages(["zod"]),
        lambda ex: ex.run_command("ls", ["-la"]),
    ],
)
async def test_second_gone_error_is_terminal(
    call: Any, executor: ToolExecutor, sessions: SessionCache, provider: FakeProvider, progress: ProgressReporter
) -> None:
    await sessions.get_or_provision(progress, "chat-1")
    # run_command also serves the provisioning install, so fail only tool-side calls.
    original = provider.run_command

    async def flaky_run_command(sandbox_id: str, cmd: str, args: Sequence[str] = (), **kwargs: Any) -> Any:
        if kwargs.get("detached") or list(args) == ["install", "--loglevel", "info"]:
            return await original(sandbox_id, cmd, args, **kwargs)
        raise SandboxGoneError(sandbox_id)

    provider.run_command = flaky_run_command  # type: ignore[method-assign]
    provider.failures["write_files"] = [SandboxGoneError("sbx-1"), SandboxGoneError("sbx-2")]

    result = await call(executor)

    assert result.success is False
    assert result.step is ToolStep.ERROR
    assert "no longer available" in result.message
    assert provider.count("create") == 2


@pytest.mark.asyncio
async def test_install_failure_is_not_retried(
    executor: ToolExecutor, sessions: SessionCache, provider: FakeProvider, progress: ProgressReporter
) -> None:
    handle, _ = await sessions.get_or_provision(progress, "chat-1")
    provider.install_exit_code = 1

    result = await executor.install_packages(["does-not-exist"])

    payload = result.to_payload()
    assert payload["success"] is False
    assert payload["step"] == "error"
    assert payload["exitCode"] == 1
    assert provider.count("create") == 1
    assert sessions.get("chat-1") == handle


@pytest.mark.asyncio
async def test_install_packages_success(executor: ToolExecutor, provider: FakeProvider) -> None:
    result = await executor.install_packages(["zod", "clsx"])

    assert result.success is True
    assert result.message == "📦 Installed: zod, clsx"
    assert ("run_command", ("sbx-1", "npm", ["install", "zod", "clsx"], False)) in provider.calls


@pytest.mark.asyncio
async def test_install_packages_requires_names(executor: ToolExecutor, provider: FakeProvider) -> None:
    result = await executor.install_packages([])
    assert result.success is False
    assert provider.calls == []


@pytest.mark.asyncio
async def test_run_command_reports_exit_code(executor: ToolExecutor, provider: FakeProvider) -> None:
    provider.command_result = CommandResult(exit_code=2, stdout="", stderr="ls: nope")

    result = await executor.run_command("ls", ["nope"])

    assert result.success is False
    assert result.exit_code == 2
    assert result.stderr == "ls: nope"
    assert result.url == "https://3000-sbx-1.example.dev"
    assert provider.count("create") == 1


@pytest.mark.asyncio
async def test_start_failure_returns_result(executor: ToolExecutor, provider: FakeProvider) -> None:
    provider.failures["create"] = [RuntimeError("quota exceeded")]

    result = await executor.write_files(FILES)

    assert result.success is False
    assert result.step is ToolStep.SANDBOX_START_FAILED
    assert "quota exceeded" in result.message


@pytest.mark.asyncio
async def test_restart_failure_returns_result(
    executor: ToolExecutor, sessions: SessionCache, provider: FakeProvider, progress: ProgressReporter
) -> None:
    await sessions.get_or_provision(progress, "chat-1")
    provider.failures["write_files"] = [SandboxGoneError("sbx-1")]
    provider.failures["create"] = [RuntimeError("quota exceeded")]

    result = await executor.write_files(FILES)

    assert result.success is False
    assert result.step is ToolStep.SANDBOX_RESTART_FAILED
    assert sessions.get("chat-1") is None


@pytest.mark.asyncio
async def test_non_gone_error_is_not_retried(
    executor: ToolExecutor, sessions: SessionCache, provider: FakeProvider, progress: ProgressReporter
) -> None:
    await sessions.get_or_provision(progress, "chat-1")
    provider.failures["write_files"] = [RuntimeError("disk full")]

    result = await executor.write_files(FILES)

    assert result.success is False
    assert result.step is ToolStep.ERROR
    assert result.message == "❌ Error writing files: disk full"
    assert provider.count("create") == 1


@pytest.mark.asyncio
async def test_timeout_is_treated_as_gone(
    executor: ToolExecutor, sessions: SessionCache, provider: FakeProvider, progress: ProgressReporter
) -> None:
    await sessions.get_or_provision(progress, "chat-1")
    executor.config.operation_timeout = 0.05
    original = provider.write_files
    hung = {"done": False}

    async def hang_once(sandbox_id: str, files: Sequence[FileWrite]) -> None:
        if not hung["done"]:
            hung["done"] = True
            await asyncio.sleep(1)
        await original(sandbox_id, files)

    provider.write_files = hang_once  # type: ignore[method-assign]

    result = await executor.write_files(FILES)

    assert result.success is True
    assert provider.count("create") == 2
