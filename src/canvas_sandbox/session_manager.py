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
import time
from dataclasses import dataclass

from loguru import logger

from canvas_sandbox.config import SandboxConfig
from canvas_sandbox.exceptions import ProvisionError
from canvas_sandbox.models import SandboxHandle
from canvas_sandbox.progress import ProgressReporter
from canvas_sandbox.provisioner import Provisioner

DEFAULT_SESSION = "default"


@dataclass
class Session:
    handle: SandboxHandle
    last_accessed: float


class SessionCache:
    """Maps session keys to the sandbox currently serving them.

    `get`, `set` and `invalidate` are plain slot operations with no liveness
    check. Provision-or-reuse runs under a per-key lock so that concurrent
    turns for one key never provision more than one sandbox. A background
    reaper evicts sessions that have been idle past the sandbox idle timeout.
    """

    def __init__(self, provisioner: Provisioner, config: SandboxConfig | None = None):
        """Initializes the SessionCache.

        Args:
            provisioner: Used to cold start sandboxes on a cache miss.
            config: Optional configuration object. If not provided, the provisioner's is used.
        """
        self.provisioner = provisioner
        self.config = config or provisioner.config
        self.sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._reaper_task: asyncio.Task[None] | None = None

    def get(self, key: str = DEFAULT_SESSION) -> SandboxHandle | None:
        session = self.sessions.get(key)
        if session is None:
            return None
        session.last_accessed = time.time()
        return session.handle

    def set(self, handle: SandboxHandle, key: str = DEFAULT_SESSION) -> None:
        self.sessions[key] = Session(handle=handle, last_accessed=time.time())

    def invalidate(self, key: str = DEFAULT_SESSION) -> SandboxHandle | None:
        """Clear the slot so the next get() returns None. Returns the evicted handle."""
        session = self.sessions.pop(key, None)
        if session is not None:
            logger.info(f"Invalidated sandbox {session.handle.id} for session {key}")
            return session.handle
        return None

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def get_or_provision(
        self, progress: ProgressReporter, key: str = DEFAULT_SESSION
    ) -> tuple[SandboxHandle, bool]:
        """Return the cached handle for `key`, provisioning one if the slot is empty.

        Returns:
            tuple[SandboxHandle, bool]: The handle and whether it was reused.

        Raises:
            ProvisionError: If provisioning fails. No handle is cached.
        """
        await self._start_reaper_if_needed()

        # Optimistic check
        handle = self.get(key)
        if handle is not None:
            self._report_reuse(progress, handle)
            return handle, True

        async with self.lock_for(key):
            # Double-check inside lock
            handle = self.get(key)
            if handle is not None:
                self._report_reuse(progress, handle)
                return handle, True

            handle = await self._provision(progress, key)
            return handle, False

    async def reprovision(
        self, stale: SandboxHandle | None, progress: ProgressReporter, key: str = DEFAULT_SESSION
    ) -> SandboxHandle:
        """Replace a sandbox that was found to be gone.

        If another caller already replaced `stale`, the newer handle is returned
        without provisioning again.

        Raises:
            ProvisionError: If provisioning the replacement fails.
        """
        async with self.lock_for(key):
            current = self.get(key)
            if current is not None and (stale is None or current.id != stale.id):
                logger.info(f"Sandbox for session {key} already replaced by {current.id}")
                return current

            evicted = self.invalidate(key)
            if evicted is not None:
                await self._delete_quietly(evicted.id)
            return await self._provision(progress, key)

    async def _provision(self, progress: ProgressReporter, key: str) -> SandboxHandle:
        logger.info("Allocating sandbox session", session=key)
        try:
            handle = await self.provisioner.provision(progress)
        except ProvisionError as e:
            if e.sandbox_id:
                await self._delete_quietly(e.sandbox_id)
            raise
        self.set(handle, key)
        return handle

    @staticmethod
    def _report_reuse(progress: ProgressReporter, handle: SandboxHandle) -> None:
        progress.report("♻️  Reusing existing sandbox", f"[sandbox] ♻️  Reusing existing sandbox: {handle.base_url}")
        progress.append_setup_step(f"✅ App running at: {handle.base_url}")

    async def _delete_quietly(self, sandbox_id: str) -> None:
        try:
            await self.provisioner.provider.delete(sandbox_id)
        except Exception as e:
            logger.warning(f"Error deleting sandbox {sandbox_id}: {e}")

    async def _start_reaper_if_needed(self) -> None:
        """Start the background reaper task if it is not already running."""
        if self._reaper_task is None or self._reaper_task.done():
            self._reaper_task = asyncio.create_task(self._reaper_loop())

    async def reap_expired(self) -> list[str]:
        """Evict and delete sandboxes idle longer than the idle timeout.

        Returns:
            list[str]: The session keys that were evicted.
        """
        now = time.time()
        expired_keys = [
            key
            for key, session in self.sessions.items()
            if now - session.last_accessed > self.config.sandbox_idle_timeout
        ]

        reaped: list[str] = []
        for key in expired_keys:
            lock = self.lock_for(key)
            if lock.locked():
                # A turn is provisioning or replacing this sandbox right now.
                continue
            async with lock:
                # Earlier deletes yield; the session may have been used since the scan.
                session = self.sessions.get(key)
                if session is None or time.time() - session.last_accessed <= self.config.sandbox_idle_timeout:
                    continue
                logger.info(f"Session {key} expired. Terminating.")
                evicted = self.invalidate(key)
                if evicted is not None:
                    await self._delete_quietly(evicted.id)
                    reaped.append(key)
        return reaped

    async def _reaper_loop(self) -> None:
        """Background task to clean up idle sessions."""
        logger.info("Session reaper started")
        try:
            while True:
                await asyncio.sleep(self.config.reaper_interval)
                await self.reap_expired()
        except asyncio.CancelledError:
            logger.info("Session reaper cancelled")
        except Exception as e:
            logger.error(f"Session reaper crashed: {e}")

    async def shutdown(self) -> None:
        """Delete all cached sandboxes and stop the reaper."""
        if self._reaper_task and not self._reaper_task.done():
            self._reaper_task.cancel()
            try:
                await self._reaper_task
            except asyncio.CancelledError:
                pass
            self._reaper_task = None

        logger.info(f"Shutting down SessionCache. Terminating {len(self.sessions)} sandboxes.")

        handles = [session.handle for session in self.sessions.values()]
        self.sessions.clear()

        for handle in handles:
            await self._delete_quietly(handle.id)
