"""Health verification and rollback for a freshly swapped binary.

The verifier is a small state machine driven once per run:

    STARTING → HEALTHY
    STARTING → UNHEALTHY → ROLLING_BACK → ROLLED_BACK_HEALTHY
                                        → ROLLED_BACK_UNHEALTHY

Only UPGRADE runs may leave UNHEALTHY through ROLLING_BACK; a fresh install
has nothing to roll back to and fails with InstallHealthCheckError.
"""

import asyncio
from typing import Optional
import logging

from deployer.errors import (
    BackupError,
    CriticalRecoveryFailure,
    InstallHealthCheckError,
    InvalidTransitionError,
    ServiceControlError,
)
from deployer.models.config import DeployConfig
from deployer.models.status import DeploymentMode, HealthState
from deployer.services.process import ProcessManager
from deployer.services.swap import BinarySwapManager

_VALID_TRANSITIONS: dict[Optional[HealthState], set[HealthState]] = {
    None: {HealthState.STARTING},
    HealthState.STARTING: {HealthState.HEALTHY, HealthState.UNHEALTHY},
    HealthState.UNHEALTHY: {HealthState.ROLLING_BACK},
    HealthState.ROLLING_BACK: {
        HealthState.ROLLED_BACK_HEALTHY,
        HealthState.ROLLED_BACK_UNHEALTHY,
    },
    HealthState.HEALTHY: set(),
    HealthState.ROLLED_BACK_HEALTHY: set(),
    HealthState.ROLLED_BACK_UNHEALTHY: set(),
}


class HealthVerifier:
    """Starts the service, checks it, and rolls an upgrade back on failure."""

    def __init__(
        self,
        config: DeployConfig,
        process_manager: ProcessManager,
        swap_manager: BinarySwapManager,
    ):
        self.logger = logging.getLogger("deployer.health")
        self.config = config
        self.process_manager = process_manager
        self.swap_manager = swap_manager
        self.state: Optional[HealthState] = None
        self.history: list[HealthState] = []

    def _transition(self, new_state: HealthState) -> None:
        if new_state not in _VALID_TRANSITIONS[self.state]:
            current = self.state.value if self.state else "none"
            raise InvalidTransitionError(
                f"Cannot move from {current} to {new_state.value}"
            )
        self.logger.debug(
            f"Health state: {self.state.value if self.state else 'none'} -> {new_state.value}"
        )
        self.state = new_state
        self.history.append(new_state)

    async def verify(self, mode: DeploymentMode) -> HealthState:
        """Drive the state machine to a terminal state.

        Returns:
            HEALTHY, or ROLLED_BACK_HEALTHY when an upgrade was reverted

        Raises:
            InstallHealthCheckError: Fresh install did not become active
            CriticalRecoveryFailure: Upgrade and rollback both failed
            ServiceControlError: Enabling a fresh install failed
        """
        service_name = self.config.service_name
        self._transition(HealthState.STARTING)

        if mode == DeploymentMode.FRESH_INSTALL:
            self.logger.info(f"Enabling {service_name} service...")
            await self.process_manager.enable_service(service_name)
            self.logger.info(f"Starting {service_name} service...")
            await self._request(self.process_manager.start_service)
        else:
            self.logger.info("Restarting service...")
            await self._request(self.process_manager.restart_service)

        self.logger.info("Checking service status...")
        if await self._check_active():
            self._transition(HealthState.HEALTHY)
            if mode == DeploymentMode.UPGRADE:
                await self.swap_manager.remove_backup()
                self.logger.info("Service updated and running successfully!")
            else:
                self.logger.info("Service is running successfully!")
            return self.state

        self._transition(HealthState.UNHEALTHY)

        if mode == DeploymentMode.FRESH_INSTALL:
            raise InstallHealthCheckError(
                f"{service_name} failed to start. Check the logs with: "
                f"sudo journalctl -u {service_name} -f"
            )

        self.logger.error("Service failed to start after update. Rolling back...")
        return await self._roll_back()

    async def _roll_back(self) -> HealthState:
        service_name = self.config.service_name
        self._transition(HealthState.ROLLING_BACK)

        try:
            await self.swap_manager.restore_backup()
        except BackupError as e:
            self._transition(HealthState.ROLLED_BACK_UNHEALTHY)
            raise CriticalRecoveryFailure(
                f"Could not restore previous binary: {e}. Inspect the host manually "
                f"and check the logs with: sudo journalctl -u {service_name} -f"
            ) from e

        await self._request(self.process_manager.start_service)

        if await self._check_active():
            self._transition(HealthState.ROLLED_BACK_HEALTHY)
            self.logger.warning(
                f"Rolled back to previous version; the new version did not take effect. "
                f"Check the logs with: sudo journalctl -u {service_name} -f"
            )
            return self.state

        self._transition(HealthState.ROLLED_BACK_UNHEALTHY)
        raise CriticalRecoveryFailure(
            f"{service_name} is not running even after restoring the previous binary. "
            f"Check the logs with: sudo journalctl -u {service_name} -f"
        )

    async def _request(self, action) -> None:
        """Issue start/restart; failures surface through the status check."""
        try:
            await action(self.config.service_name)
        except (ServiceControlError, TimeoutError) as e:
            self.logger.error(str(e))

    async def _check_active(self) -> bool:
        if self.config.health_settle_seconds:
            await asyncio.sleep(self.config.health_settle_seconds)
        return await self.process_manager.is_active(self.config.service_name)
