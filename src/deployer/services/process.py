"""Process management for systemd service control."""

import asyncio
from enum import Enum
from typing import Optional, Sequence
import logging

from deployer.errors import ServiceControlError


class ServiceStatus(str, Enum):
    """Values reported by ``systemctl is-active``."""

    ACTIVE = "active"
    RELOADING = "reloading"
    INACTIVE = "inactive"
    FAILED = "failed"
    ACTIVATING = "activating"
    DEACTIVATING = "deactivating"
    UNKNOWN = "unknown"


class ProcessManager:
    """Controls one systemd unit through ``systemctl``.

    Every command may be prefixed with an elevation command (``sudo``);
    the deployer itself never runs as root.
    """

    START_TIMEOUT = 30.0
    STOP_TIMEOUT = 30.0
    COMMAND_TIMEOUT = 30.0
    CHECK_INTERVAL = 0.5

    def __init__(
        self,
        command_prefix: Optional[Sequence[str]] = None,
        command_timeout: Optional[float] = None,
        start_timeout: Optional[float] = None,
        stop_timeout: Optional[float] = None,
    ):
        """Initialize process manager.

        Args:
            command_prefix: Elevation command placed before ``systemctl``
            command_timeout: Upper bound for a single systemctl call
            start_timeout: Wait for active after start/restart
            stop_timeout: Wait for inactive after stop
        """
        self.logger = logging.getLogger("deployer.process")
        self.command_prefix = list(command_prefix or [])
        self.command_timeout = command_timeout or self.COMMAND_TIMEOUT
        self.start_timeout = start_timeout or self.START_TIMEOUT
        self.stop_timeout = stop_timeout or self.STOP_TIMEOUT

    async def _run_systemctl(self, *args: str) -> tuple[int, str, str]:
        """Run a systemctl command.

        Returns:
            Tuple of (return_code, stdout, stderr)

        Raises:
            ServiceControlError: If systemctl is missing or the call times out
        """
        command = [*self.command_prefix, "systemctl", *args]
        self.logger.debug(f"Running: {' '.join(command)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ServiceControlError(
                f"{command[0]} not available: {e}", code="SYSTEMCTL_UNAVAILABLE"
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.command_timeout
            )
        except asyncio.TimeoutError as e:
            process.kill()
            raise ServiceControlError(
                f"'systemctl {' '.join(args)}' timed out after {self.command_timeout}s",
                code="SYSTEMCTL_TIMEOUT",
            ) from e

        return (
            process.returncode or 0,
            stdout.decode() if stdout else "",
            stderr.decode() if stderr else "",
        )

    async def get_service_status(self, service_name: str) -> ServiceStatus:
        """Get current status of a service via ``systemctl is-active``.

        Returns:
            ServiceStatus, UNKNOWN if the status cannot be determined
        """
        try:
            # is-active exits non-zero for anything but active; stdout still carries the state
            _, stdout, _ = await self._run_systemctl("is-active", service_name)
            status_str = stdout.strip()
            try:
                return ServiceStatus(status_str)
            except ValueError:
                self.logger.warning(
                    f"Unexpected status for {service_name}: {status_str!r}"
                )
                return ServiceStatus.UNKNOWN
        except Exception as e:
            self.logger.error(f"Failed to get status of {service_name}: {e}")
            return ServiceStatus.UNKNOWN

    async def is_active(self, service_name: str) -> bool:
        return await self.get_service_status(service_name) == ServiceStatus.ACTIVE

    async def wait_for_service_status(
        self,
        service_name: str,
        target_status: ServiceStatus,
        timeout: float,
        check_interval: Optional[float] = None,
    ) -> None:
        """Poll until the service reaches target_status.

        Raises:
            asyncio.TimeoutError: If the status is not reached within timeout
        """
        check_interval = check_interval or self.CHECK_INTERVAL
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            status = await self.get_service_status(service_name)
            if status == target_status:
                self.logger.debug(f"{service_name} reached {target_status.value}")
                return
            if loop.time() >= deadline:
                raise asyncio.TimeoutError(
                    f"{service_name} did not reach {target_status.value} "
                    f"within {timeout}s (last status: {status.value})"
                )
            await asyncio.sleep(check_interval)

    async def stop_service(
        self, service_name: str, timeout: Optional[float] = None
    ) -> None:
        """Stop a service and wait until it is inactive.

        Raises:
            ServiceControlError: If systemctl stop fails (SERVICE_STOP_FAILED)
            TimeoutError: If the service doesn't stop in time (SERVICE_STOP_TIMEOUT)
        """
        timeout = timeout or self.stop_timeout
        self.logger.info(f"Stopping service: {service_name}")

        returncode, stdout, stderr = await self._run_systemctl("stop", service_name)
        if returncode != 0:
            raise ServiceControlError(
                f"Failed to stop {service_name}: exit code {returncode}, "
                f"stderr: {stderr.strip() or stdout.strip()}",
                code="SERVICE_STOP_FAILED",
            )

        try:
            await self.wait_for_service_status(
                service_name,
                target_status=ServiceStatus.INACTIVE,
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"SERVICE_STOP_TIMEOUT: {service_name} did not stop within {timeout}s"
            ) from e

        self.logger.info(f"Service {service_name} stopped")

    async def start_service(
        self, service_name: str, timeout: Optional[float] = None
    ) -> None:
        """Start a service and wait until it is active.

        Raises:
            ServiceControlError: If systemctl start fails (SERVICE_START_FAILED)
            TimeoutError: If the service doesn't start in time (SERVICE_START_TIMEOUT)
        """
        timeout = timeout or self.start_timeout
        self.logger.info(f"Starting service: {service_name}")

        returncode, stdout, stderr = await self._run_systemctl("start", service_name)
        if returncode != 0:
            raise ServiceControlError(
                f"Failed to start {service_name}: exit code {returncode}, "
                f"stderr: {stderr.strip() or stdout.strip()}",
                code="SERVICE_START_FAILED",
            )

        try:
            await self.wait_for_service_status(
                service_name,
                target_status=ServiceStatus.ACTIVE,
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"SERVICE_START_TIMEOUT: {service_name} did not start within {timeout}s"
            ) from e

        self.logger.info(f"Service {service_name} started")

    async def restart_service(
        self, service_name: str, timeout: Optional[float] = None
    ) -> None:
        """Restart a service and wait until it is active.

        Raises:
            ServiceControlError: If systemctl restart fails (SERVICE_RESTART_FAILED)
            TimeoutError: If the service doesn't come back in time (SERVICE_RESTART_TIMEOUT)
        """
        timeout = timeout or self.start_timeout
        self.logger.info(f"Restarting service: {service_name}")

        returncode, stdout, stderr = await self._run_systemctl("restart", service_name)
        if returncode != 0:
            raise ServiceControlError(
                f"Failed to restart {service_name}: exit code {returncode}, "
                f"stderr: {stderr.strip() or stdout.strip()}",
                code="SERVICE_RESTART_FAILED",
            )

        try:
            await self.wait_for_service_status(
                service_name,
                target_status=ServiceStatus.ACTIVE,
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"SERVICE_RESTART_TIMEOUT: {service_name} did not come back within {timeout}s"
            ) from e

        self.logger.info(f"Service {service_name} restarted successfully")

    async def enable_service(self, service_name: str) -> None:
        """Enable a service so it starts on boot."""
        self.logger.info(f"Enabling service: {service_name}")

        returncode, stdout, stderr = await self._run_systemctl("enable", service_name)
        if returncode != 0:
            raise ServiceControlError(
                f"Failed to enable {service_name}: exit code {returncode}, "
                f"stderr: {stderr.strip() or stdout.strip()}",
                code="SERVICE_ENABLE_FAILED",
            )

    async def daemon_reload(self) -> None:
        """Ask systemd to re-read unit definitions."""
        self.logger.debug("Reloading systemd unit definitions")

        returncode, stdout, stderr = await self._run_systemctl("daemon-reload")
        if returncode != 0:
            raise ServiceControlError(
                f"daemon-reload failed: exit code {returncode}, "
                f"stderr: {stderr.strip() or stdout.strip()}",
                code="DAEMON_RELOAD_FAILED",
            )
