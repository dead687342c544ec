import asyncio
import io
import posixpath
import tarfile
import time
from typing import Any, Callable, Sequence, TypeVar

import docker
from docker.errors import APIError, DockerException, NotFound
from docker.models.containers import Container
from loguru import logger

from canvas_sandbox.exceptions import SandboxGoneError
from canvas_sandbox.models import CommandResult, FileWrite, PreviewLink, ResourceSpec, TemplateSource
from canvas_sandbox.runtime import SandboxProvider

T = TypeVar("T")

MANAGED_LABEL = "canvas_sandbox.managed"
IDLE_TIMEOUT_LABEL = "canvas_sandbox.idle_timeout"


class DockerProvider(SandboxProvider):
    """
    Docker-based implementation of the SandboxProvider.

    Each sandbox is a long-lived container with the app port published on an
    ephemeral host port. Blocking Docker SDK calls are offloaded to threads.
    """

    name = "docker"

    def __init__(
        self,
        image: str = "node:22",
        project_root: str = "/home/user/app",
        public_host: str = "localhost",
        client: docker.DockerClient | None = None,
        disk_quota: bool = False,
    ):
        """Initializes the DockerProvider.

        Args:
            image: Base image for git-template sandboxes.
            project_root: Directory inside the container that holds the app.
            public_host: Host name used to build preview URLs.
            client: Optional Docker client. Defaults to `docker.from_env()`.
            disk_quota: Apply `ResourceSpec.disk_gib` as a storage quota. Off by default
                because most storage drivers reject `storage_opt`.
        """
        self.client = client or docker.from_env()
        self.image = image
        self.project_root = project_root
        self.public_host = public_host
        self.disk_quota = disk_quota

    async def _call(self, sandbox_id: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking SDK call in a thread, translating missing/stopped containers."""
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except NotFound as e:
            raise SandboxGoneError(sandbox_id, "not found") from e
        except APIError as e:
            if e.status_code == 409 and "is not running" in str(e.explanation or e):
                raise SandboxGoneError(sandbox_id, "sandbox_stopped") from e
            raise

    async def _container(self, sandbox_id: str) -> Container:
        container: Container = await self._call(sandbox_id, self.client.containers.get, sandbox_id)
        if container.status != "running":
            raise SandboxGoneError(sandbox_id, "sandbox_stopped")
        return container

    async def create(
        self,
        template: TemplateSource,
        resources: ResourceSpec,
        timeout_seconds: float,
        port: int,
    ) -> str:
        image = template.url if template.type == "image" else self.image
        logger.info(f"Starting Docker sandbox with image {image}")
        run_kwargs: dict[str, Any] = {}
        if self.disk_quota:
            # Needs a storage driver with quota support (e.g. overlay2 on xfs with pquota).
            run_kwargs["storage_opt"] = {"size": f"{resources.disk_gib}G"}
        try:
            container = await asyncio.to_thread(
                self.client.containers.run,
                image,
                command="tail -f /dev/null",
                detach=True,
                nano_cpus=int(resources.vcpus * 1e9),
                mem_limit=f"{resources.memory_gib}g",
                ports={f"{port}/tcp": None},
                labels={
                    MANAGED_LABEL: "true",
                    IDLE_TIMEOUT_LABEL: str(int(timeout_seconds)),
                },
                working_dir=self.project_root,
                **run_kwargs,
            )
        except DockerException as e:
            logger.error(f"Failed to start Docker sandbox: {e}")
            raise

        logger.info(f"Docker sandbox started: {container.short_id}")

        if template.type == "git":
            try:
                exit_code, output = await asyncio.to_thread(
                    container.exec_run,
                    ["git", "clone", "--depth", "1", template.url, "."],
                    workdir=self.project_root,
                )
            except DockerException as e:
                logger.error(f"Failed to clone {template.url} into sandbox: {e}")
                await self.delete(container.id)
                raise
            if exit_code != 0:
                msg = output.decode("utf-8", errors="replace") if output else ""
                logger.error(f"Failed to clone {template.url} into sandbox: {msg}")
                await self.delete(container.id)
                raise RuntimeError(f"git clone of {template.url} failed (exit {exit_code}): {msg}")

        return str(container.id)

    async def run_command(
        self,
        sandbox_id: str,
        cmd: str,
        args: Sequence[str] = (),
        *,
        detached: bool = False,
        cwd: str | None = None,
    ) -> CommandResult:
        container = await self._container(sandbox_id)
        argv = [cmd, *args]
        workdir = cwd or self.project_root

        if detached:
            await self._call(sandbox_id, container.exec_run, argv, workdir=workdir, detach=True)
            return CommandResult(exit_code=None)

        exit_code, output = await self._call(sandbox_id, container.exec_run, argv, workdir=workdir, demux=True)
        stdout_bytes, stderr_bytes = output if output else (None, None)
        return CommandResult(
            exit_code=exit_code,
            stdout=stdout_bytes.decode("utf-8", errors="replace") if stdout_bytes else "",
            stderr=stderr_bytes.decode("utf-8", errors="replace") if stderr_bytes else "",
        )

    @staticmethod
    def _build_archive(files: Sequence[FileWrite]) -> bytes:
        tar_stream = io.BytesIO()
        now = time.time()
        with tarfile.open(fileobj=tar_stream, mode="w") as tar:
            seen_dirs: set[str] = set()
            for file in files:
                # Parent directories first so extraction never depends on the daemon creating them.
                parent = posixpath.dirname(file.path)
                parts: list[str] = []
                for part in (parent.split("/") if parent else []):
                    parts.append(part)
                    dir_name = "/".join(parts)
                    if dir_name in seen_dirs:
                        continue
                    seen_dirs.add(dir_name)
                    dir_info = tarfile.TarInfo(dir_name)
                    dir_info.type = tarfile.DIRTYPE
                    dir_info.mode = 0o755
                    dir_info.mtime = int(now)
                    tar.addfile(dir_info)

                data = file.contents.encode("utf-8")
                info = tarfile.TarInfo(file.path)
                info.size = len(data)
                info.mode = 0o644
                info.mtime = int(now)
                tar.addfile(info, io.BytesIO(data))
        return tar_stream.getvalue()

    async def write_files(self, sandbox_id: str, files: Sequence[FileWrite]) -> None:
        container = await self._container(sandbox_id)
        archive = self._build_archive(files)
        logger.info(f"Writing {len(files)} file(s) to sandbox {container.short_id}")
        ok = await self._call(sandbox_id, container.put_archive, self.project_root, archive)
        if not ok:
            raise RuntimeError(f"Failed to write files to sandbox {sandbox_id}")

    async def domain_for(self, sandbox_id: str, port: int) -> PreviewLink:
        container = await self._container(sandbox_id)
        await self._call(sandbox_id, container.reload)
        bindings = (container.ports or {}).get(f"{port}/tcp")
        if not bindings:
            raise RuntimeError(f"Port {port} is not published for sandbox {sandbox_id}")
        host_port = bindings[0]["HostPort"]
        return PreviewLink(url=f"http://{self.public_host}:{host_port}")

    async def delete(self, sandbox_id: str) -> None:
        logger.info(f"Terminating Docker sandbox: {sandbox_id[:12]}")
        try:
            container = await asyncio.to_thread(self.client.containers.get, sandbox_id)
            await asyncio.to_thread(container.remove, force=True)
        except NotFound:
            logger.warning(f"Attempted to terminate non-existent Docker sandbox {sandbox_id[:12]}")
