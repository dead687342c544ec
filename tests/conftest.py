from typing import Any, AsyncGenerator, Callable, Sequence
from unittest.mock import patch

import httpx
import pytest
import pytest_asyncio

from canvas_sandbox.config import SandboxConfig
from canvas_sandbox.models import CommandResult, FileWrite, PreviewLink, ResourceSpec, TemplateSource
from canvas_sandbox.progress import GlobalLog, ProgressReporter
from canvas_sandbox.provisioner import Provisioner
from canvas_sandbox.runtime import SandboxProvider
from canvas_sandbox.session_manager import SessionCache

READY_BODY = '<html><script type="module" src="/@vite/client"></script></html>'


class FakeProvider(SandboxProvider):
    """In-memory provider that records every call.

    `failures` maps a method name to a list of exceptions raised on
    successive calls; `install_exit_code` controls the package install result.
    """

    name = "fake"

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.created: list[str] = []
        self.deleted: list[str] = []
        self.files: dict[str, dict[str, str]] = {}
        self.failures: dict[str, list[BaseException]] = {}
        self.install_exit_code = 0
        self.command_result = CommandResult(exit_code=0, stdout="ok")

    def _maybe_fail(self, method: str) -> None:
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    async def create(
        self, template: TemplateSource, resources: ResourceSpec, timeout_seconds: float, port: int
    ) -> str:
        self.calls.append(("create", template))
        self._maybe_fail("create")
        sandbox_id = f"sbx-{len(self.created) + 1}"
        self.created.append(sandbox_id)
        self.files[sandbox_id] = {}
        return sandbox_id

    async def run_command(
        self,
        sandbox_id: str,
        cmd: str,
        args: Sequence[str] = (),
        *,
        detached: bool = False,
        cwd: str | None = None,
    ) -> CommandResult:
        self.calls.append(("run_command", (sandbox_id, cmd, list(args), detached)))
        self._maybe_fail("run_command")
        if detached:
            return CommandResult(exit_code=None)
        if list(args[:1]) == ["install"]:
            return CommandResult(exit_code=self.install_exit_code, stdout="added 1 package")
        return self.command_result

    async def write_files(self, sandbox_id: str, files: Sequence[FileWrite]) -> None:
        self.calls.append(("write_files", (sandbox_id, [f.path for f in files])))
        self._maybe_fail("write_files")
        for f in files:
            self.files[sandbox_id][f.path] = f.contents

    async def domain_for(self, sandbox_id: str, port: int) -> PreviewLink:
        self.calls.append(("domain_for", (sandbox_id, port)))
        self._maybe_fail("domain_for")
        return PreviewLink(url=f"https://{port}-{sandbox_id}.example.dev", token=f"tok-{sandbox_id}")

    async def delete(self, sandbox_id: str) -> None:
        self.calls.append(("delete", sandbox_id))
        self._maybe_fail("delete")
        self.deleted.append(sandbox_id)


def make_http_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def ready_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, text=READY_BODY)


@pytest.fixture
def config() -> SandboxConfig:
    with patch.dict("os.environ", {}, clear=True):
        return SandboxConfig(
            _env_file=None,
            health_timeout=0.2,
            health_interval=0.01,
            operation_timeout=1.0,
            reaper_interval=3600,
        )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def global_log() -> GlobalLog:
    return GlobalLog()


@pytest.fixture
def progress(global_log: GlobalLog) -> ProgressReporter:
    return ProgressReporter(global_log)


@pytest.fixture
def provisioner(provider: FakeProvider, config: SandboxConfig) -> Provisioner:
    return Provisioner(provider, config, client=make_http_client(ready_handler))


@pytest_asyncio.fixture
async def sessions(provisioner: Provisioner) -> AsyncGenerator[SessionCache, None]:
    cache = SessionCache(provisioner)
    yield cache
    await cache.shutdown()
