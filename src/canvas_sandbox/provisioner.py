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

import httpx
from loguru import logger

from canvas_sandbox.config import SandboxConfig
from canvas_sandbox.exceptions import ProvisionError, ProvisionPhase
from canvas_sandbox.models import PreviewLink, ResourceSpec, SandboxHandle, TemplateSource
from canvas_sandbox.progress import ProgressReporter
from canvas_sandbox.runtime import SandboxProvider


class Provisioner:
    """Owns the cold start of a sandbox.

    A cold start creates the sandbox, installs dependencies, launches the dev
    server detached, resolves the public URL and polls it until the app
    answers with a readiness marker. Every phase transition is reported to the
    ProgressReporter. Nothing is rolled back here: a failure carries the
    sandbox id so the caller can decide whether to delete it.
    """

    def __init__(
        self,
        provider: SandboxProvider,
        config: SandboxConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initializes the Provisioner.

        Args:
            provider: The sandbox provider to provision against.
            config: Configuration object. If not provided, defaults are used.
            client: Optional httpx.AsyncClient used for health checks.
        """
        self.provider = provider
        self.config = config or SandboxConfig()
        self._client = client

    @property
    def token_header(self) -> str:
        return f"X-{self.provider.name.capitalize()}-Preview-Token"

    async def provision(
        self,
        progress: ProgressReporter,
        template: TemplateSource | None = None,
        resources: ResourceSpec | None = None,
        port: int | None = None,
    ) -> SandboxHandle:
        """Create a sandbox and wait until the app inside it is ready.

        Args:
            progress: Receives setup steps and log lines.
            template: Project source. Defaults to the configured template.
            resources: Resource profile. Defaults to the configured profile.
            port: App port to expose. Defaults to the configured port.

        Returns:
            SandboxHandle: Handle to the ready sandbox.

        Raises:
            ProvisionError: If any phase fails or the app never becomes ready.
        """
        template = template or self.config.template
        resources = resources or self.config.resources
        port = port or self.config.app_port

        progress.report(
            "🚀 Creating sandbox from React template...",
            "[sandbox] 🚀 Creating NEW sandbox from React template...",
        )
        try:
            sandbox_id = await self.provider.create(template, resources, self.config.sandbox_idle_timeout, port)
        except Exception as e:
            progress.report("❌ Sandbox creation failed", f"[sandbox] ❌ Sandbox creation failed: {e}")
            raise ProvisionError(ProvisionPhase.CREATE, f"Sandbox creation failed: {e}") from e
        progress.report("✅ Sandbox created", "[sandbox] ✅ Sandbox created")

        progress.report("📦 Installing dependencies...", "[sandbox] 📦 Installing dependencies...")
        install_cmd, *install_args = self.config.install_command
        try:
            install = await self.provider.run_command(sandbox_id, install_cmd, install_args)
        except Exception as e:
            progress.report("❌ Installing packages failed", f"[sandbox] ❌ Installing packages failed: {e}")
            raise ProvisionError(ProvisionPhase.INSTALL, f"Installing packages failed: {e}", sandbox_id) from e
        if install.exit_code != 0:
            progress.report("❌ Installing packages failed", "[sandbox] ❌ Installing packages failed")
            raise ProvisionError(ProvisionPhase.INSTALL, "Installing packages failed", sandbox_id)
        progress.report("✅ Dependencies installed", "[sandbox] ✅ Dependencies installed")

        progress.report("🔥 Starting development server...", "[sandbox] 🔥 Starting development server...")
        dev_cmd, *dev_args = [arg.replace("{port}", str(port)) for arg in self.config.dev_command]
        try:
            await self.provider.run_command(sandbox_id, dev_cmd, dev_args, detached=True)
        except Exception as e:
            progress.report("❌ Starting development server failed", f"[sandbox] ❌ Starting dev server failed: {e}")
            raise ProvisionError(ProvisionPhase.START, f"Starting development server failed: {e}", sandbox_id) from e

        try:
            link = await self.provider.domain_for(sandbox_id, port)
        except Exception as e:
            progress.report("❌ Exposing app port failed", f"[sandbox] ❌ Exposing port {port} failed: {e}")
            raise ProvisionError(ProvisionPhase.EXPOSE, f"Exposing port {port} failed: {e}", sandbox_id) from e

        progress.append_log(f"[sandbox] ⏳ Waiting for app at {link.url}...")
        try:
            await self.wait_until_ready(link, sandbox_id)
        except ProvisionError as e:
            progress.report("❌ App did not become ready", f"[sandbox] ❌ {e}")
            raise

        tunnel_url = None
        if self.config.init_template_path and template.type == "git":
            tunnel_url = await self.init_template(link, template)

        progress.report(f"✅ App running at: {link.url}", f"[sandbox] ✅ App running at: {link.url}")
        return SandboxHandle(id=sandbox_id, base_url=link.url, access_token=link.token, tunnel_url=tunnel_url)

    def _headers(self, link: PreviewLink) -> dict[str, str]:
        return {self.token_header: link.token} if link.token else {}

    def _is_ready(self, response: httpx.Response) -> bool:
        if not response.is_success:
            return False
        body = response.text
        return any(marker in body for marker in self.config.readiness_markers)

    async def wait_until_ready(self, link: PreviewLink, sandbox_id: str | None = None) -> None:
        """Poll the app URL until it answers 2xx with a readiness marker.

        Raises:
            ProvisionError: If the app is not ready within the health timeout.
        """
        if self._client is not None:
            await self._poll(self._client, link, sandbox_id)
            return
        async with httpx.AsyncClient(timeout=self.config.health_request_timeout) as client:
            await self._poll(client, link, sandbox_id)

    async def _poll(self, client: httpx.AsyncClient, link: PreviewLink, sandbox_id: str | None) -> None:
        loop = asyncio.get_running_loop()
        start = loop.time()
        url = link.url.rstrip("/") + self.config.health_path
        attempt = 0

        logger.info(f"Waiting for app at {url}...")
        while loop.time() - start < self.config.health_timeout:
            attempt += 1
            try:
                response = await client.get(
                    url,
                    headers=self._headers(link),
                    timeout=self.config.health_request_timeout,
                )
                if self._is_ready(response):
                    logger.info(f"App is ready (attempt {attempt}, status {response.status_code})")
                    return
                logger.debug(f"App not ready yet (attempt {attempt}, status {response.status_code})")
            except httpx.HTTPError as e:
                if attempt % 5 == 0:
                    elapsed = round(loop.time() - start)
                    logger.info(f"Still waiting... (attempt {attempt}, {elapsed}s, error: {e})")

            await asyncio.sleep(self.config.health_interval)

        elapsed = round(loop.time() - start)
        raise ProvisionError(
            ProvisionPhase.HEALTH_CHECK,
            f"App did not start within {elapsed}s timeout",
            sandbox_id,
        )

    async def init_template(self, link: PreviewLink, template: TemplateSource) -> str | None:
        """Ask the in-sandbox agent to initialise the template.

        Failures are not fatal.

        Returns:
            str | None: The `tunnelUrl` the agent reported, if any.
        """
        url = link.url.rstrip("/") + (self.config.init_template_path or "")
        headers = {"Content-Type": "application/json", **self._headers(link)}
        try:
            if self._client is not None:
                response = await self._client.post(url, json={"templateUrl": template.url}, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.config.health_request_timeout) as client:
                    response = await client.post(url, json={"templateUrl": template.url}, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"Template initialization failed (non-blocking): {e}")
            return None

        if not response.is_success:
            logger.warning(
                f"Template initialization failed (non-blocking): {response.status_code} {response.text[:100]}"
            )
            return None

        try:
            data = response.json()
        except ValueError:
            return None
        tunnel_url = data.get("tunnelUrl") if isinstance(data, dict) else None
        if tunnel_url:
            logger.info(f"Template initialized, tunnel at {tunnel_url}")
        return tunnel_url

    async def call_agent(
        self, handle: SandboxHandle, prompt: str, resume_session_id: str | None = None
    ) -> httpx.Response:
        """POST a prompt to the agent process running inside the sandbox.

        The response is returned as is. Non-2xx statuses are left to the caller.

        Raises:
            httpx.HTTPError: If the agent could not be reached.
        """
        url = handle.base_url.rstrip("/") + self.config.agent_path
        link = PreviewLink(url=handle.base_url, token=handle.access_token)
        headers = {"Content-Type": "application/json", **self._headers(link)}
        body = {"prompt": prompt, "resumeSessionId": resume_session_id}
        logger.info(f"Calling sandbox agent at {url}", sandbox_id=handle.id)
        if self._client is not None:
            return await self._client.post(url, json=body, headers=headers, timeout=self.config.agent_timeout)
        async with httpx.AsyncClient(timeout=self.config.agent_timeout) as client:
            return await client.post(url, json=body, headers=headers)
