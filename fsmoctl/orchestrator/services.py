"""Local service control through systemctl"""

import logging
from typing import List

from ..errors import ServiceControlError
from ..core.commands import CommandResult, CommandRunner, run_command

logger = logging.getLogger(__name__)


class ServiceManager:
    """start/stop/restart primitives for local units"""

    def __init__(self, systemctl: str = "systemctl", timeout: float = 60.0, runner: CommandRunner = run_command):
        self.systemctl = systemctl
        self.timeout = timeout
        self.runner = runner

    async def _systemctl(self, *args: str) -> CommandResult:
        return await self.runner([self.systemctl, *args], self.timeout)

    async def state(self, service: str) -> str:
        """`systemctl is-active` state (active, inactive, failed, ...)"""
        result = await self._systemctl("is-active", service)
        if result.timed_out or result.returncode in (126, 127):
            raise ServiceControlError(service, "query", result.describe())
        return result.stdout.strip() or ("active" if result.ok else "inactive")

    async def is_active(self, service: str) -> bool:
        return await self.state(service) == "active"

    async def is_enabled(self, service: str) -> bool:
        result = await self._systemctl("is-enabled", service)
        if result.timed_out or result.returncode in (126, 127):
            raise ServiceControlError(service, "query", result.describe())
        return result.ok

    async def _action(self, action: str, service: str):
        logger.info(f"Running systemctl {action} {service}")
        result = await self._systemctl(action, service)
        if not result.ok:
            raise ServiceControlError(service, action, result.describe())

    async def start(self, service: str):
        await self._action("start", service)

    async def stop(self, service: str):
        await self._action("stop", service)

    async def restart(self, service: str):
        await self._action("restart", service)

    async def enable(self, service: str):
        await self._action("enable", service)

    async def disable(self, service: str):
        await self._action("disable", service)

    async def states(self, services: List[str]) -> dict:
        """State per service; query failures are reported as 'error'"""
        states = {}
        for service in services:
            try:
                states[service] = await self.state(service)
            except ServiceControlError as e:
                logger.warning(f"Cannot query {service}: {e}")
                states[service] = "error"
        return states
