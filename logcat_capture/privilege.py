"""Privilege tier selection: elevated channel if reachable and granted, else unprivileged."""

import abc
import asyncio
import logging
import shlex
import shutil
from enum import Enum

logger = logging.getLogger(__name__)


class Capability(Enum):
    ELEVATED = "elevated"
    UNPRIVILEGED = "unprivileged"


class PrivilegeChannel(abc.ABC):
    """Privileged command-execution facility supplied by the platform."""

    @abc.abstractmethod
    async def pingable(self) -> bool:
        """Liveness probe for the channel."""

    @abc.abstractmethod
    async def has_grant(self) -> bool:
        """Whether the caller currently holds the authorization grant."""

    @abc.abstractmethod
    async def request_grant(self) -> None:
        """Kick off the out-of-band grant flow."""

    @abc.abstractmethod
    async def spawn(self, argv: list[str]) -> asyncio.subprocess.Process:
        """Run argv with elevated rights. The returned process must expose stdout."""


class SuChannel(PrivilegeChannel):
    """Elevated channel backed by a ``su`` binary (rooted device, Termux)."""

    def __init__(self, su_binary: str = "su", probe_timeout: float = 5.0) -> None:
        self._su = su_binary
        self._probe_timeout = probe_timeout

    async def pingable(self) -> bool:
        return shutil.which(self._su) is not None

    async def has_grant(self) -> bool:
        proc = await asyncio.create_subprocess_exec(
            self._su, "-c", "id",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        try:
            out, _ = await asyncio.wait_for(proc.communicate(), self._probe_timeout)
        except asyncio.TimeoutError:
            # su managers block on a prompt until the user answers
            proc.kill()
            await proc.wait()
            return False
        return proc.returncode == 0 and b"uid=0" in out

    async def request_grant(self) -> None:
        # Invoking su is what makes the su manager show its prompt.
        await self.has_grant()

    async def spawn(self, argv: list[str]) -> asyncio.subprocess.Process:
        logger.debug("Executing elevated command: %s", shlex.join(argv))
        return await asyncio.create_subprocess_exec(
            self._su, "-c", shlex.join(argv),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )


class PrivilegeSelector:
    """Decides between the elevated and unprivileged sources.

    Probing is a heuristic: any exception raised by the channel counts as
    "unavailable" and is logged, never propagated.
    """

    def __init__(self, channel: PrivilegeChannel | None) -> None:
        self._channel = channel

    @property
    def channel(self) -> PrivilegeChannel | None:
        return self._channel

    async def is_elevated_available(self) -> bool:
        if self._channel is None:
            return False
        try:
            return bool(await self._channel.pingable()) and bool(await self._channel.has_grant())
        except Exception as e:
            logger.warning("Elevated channel not available: %s", e)
            return False

    async def request_authorization(self) -> None:
        """Request the grant unless it is already held. Safe to call repeatedly."""
        if self._channel is None:
            return
        try:
            if not await self._channel.pingable():
                logger.info("Elevated channel unreachable, not requesting grant")
                return
            if await self._channel.has_grant():
                return
            await self._channel.request_grant()
        except Exception as e:
            logger.warning("Authorization request failed: %s", e)

    async def select(self) -> Capability:
        if await self.is_elevated_available():
            return Capability.ELEVATED
        return Capability.UNPRIVILEGED
