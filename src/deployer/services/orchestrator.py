"""Orchestrates one deployment run from precondition checks to final outcome."""

import fcntl
import os
import shutil
from contextlib import contextmanager
from typing import Callable, Optional
import logging

from deployer.errors import CriticalRecoveryFailure, DeployError, PreconditionError
from deployer.models.config import DeployConfig
from deployer.models.status import (
    DeploymentMode,
    DeploymentOutcome,
    DeploymentResult,
    HealthState,
)
from deployer.services.definition import ServiceDefinitionManager
from deployer.services.detector import detect_mode
from deployer.services.download import DownloadService
from deployer.services.fileops import FileOperator
from deployer.services.health import HealthVerifier
from deployer.services.process import ProcessManager
from deployer.services.swap import BinarySwapManager


class Orchestrator:
    """Sequences detect → swap → definition → health for one run.

    The first fatal error ends the run; only an unhealthy upgrade triggers a
    compensating action (rollback, inside HealthVerifier).
    """

    def __init__(
        self,
        config: DeployConfig,
        process_manager: Optional[ProcessManager] = None,
        download_service: Optional[DownloadService] = None,
        file_operator: Optional[FileOperator] = None,
        euid_provider: Callable[[], int] = os.geteuid,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        """Initialize orchestrator.

        Args:
            config: Deployment configuration
            process_manager: Service control (built from config if None)
            download_service: Artifact source (built from config if None)
            file_operator: Elevated file placement (built from config if None)
            euid_provider: Returns the effective uid of the invoker
            which: Resolves a tool name on PATH
        """
        self.logger = logging.getLogger("deployer.orchestrator")
        self.config = config
        self.process_manager = process_manager or ProcessManager(
            command_prefix=config.elevate_command,
            command_timeout=config.command_timeout,
            start_timeout=config.start_timeout,
            stop_timeout=config.stop_timeout,
        )
        self.download_service = download_service or DownloadService(
            timeout=config.fetch_timeout,
            expected_sha256=config.artifact_sha256,
        )
        self.file_operator = file_operator or FileOperator(
            command_prefix=config.elevate_command,
            command_timeout=config.command_timeout,
        )
        self.euid_provider = euid_provider
        self.which = which

        self.swap_manager = BinarySwapManager(
            config, self.process_manager, self.download_service, self.file_operator
        )
        self.definition_manager = ServiceDefinitionManager(
            config, self.process_manager, self.file_operator
        )
        self.health_verifier = HealthVerifier(
            config, self.process_manager, self.swap_manager
        )

    @property
    def required_tools(self) -> list[str]:
        tools = ["systemctl"]
        if self.config.elevate_command:
            tools.append(self.config.elevate_command[0])
        return tools

    def check_preconditions(self) -> None:
        """Refuse to run as root or without the required tools.

        Raises:
            PreconditionError: Before anything on disk is touched
        """
        if self.euid_provider() == 0:
            raise PreconditionError(
                "This deployer should not be run as root; privileged steps use "
                f"{' '.join(self.config.elevate_command) or 'an explicit elevation command'}"
            )

        for tool in self.required_tools:
            if self.which(tool) is None:
                raise PreconditionError(f"{tool} is not installed or not on PATH")

    @contextmanager
    def _deployment_lock(self):
        """Hold an exclusive, non-blocking lock for the whole run."""
        lock_path = self.config.resolved_lock_path
        try:
            lock_path.parent.mkdir(parents=True, exist_ok=True)
            # Never truncate, never follow a planted symlink
            lock_fd = os.open(lock_path, os.O_CREAT | os.O_WRONLY | os.O_NOFOLLOW, 0o600)
        except OSError as e:
            raise PreconditionError(f"Cannot open deployment lock {lock_path}: {e}") from e

        try:
            try:
                fcntl.flock(lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError as e:
                raise PreconditionError(
                    f"Another deployment of {self.config.service_name} is in progress"
                ) from e
            yield
            fcntl.flock(lock_fd, fcntl.LOCK_UN)
        finally:
            os.close(lock_fd)

    async def run(self) -> DeploymentResult:
        """Execute one deployment and report its outcome."""
        mode: Optional[DeploymentMode] = None

        try:
            self.check_preconditions()
            with self._deployment_lock():
                mode = detect_mode(self.config.binary_path)
                health_state = await self._deploy(mode)
        except PreconditionError as e:
            self.logger.error(str(e))
            return self._result(DeploymentOutcome.PRECONDITION_FAILED, mode, e)
        except CriticalRecoveryFailure as e:
            self.logger.critical(str(e))
            return self._result(DeploymentOutcome.UPGRADE_ROLLED_BACK_FAILED, mode, e)
        except DeployError as e:
            self.logger.error(str(e))
            self.logger.error(
                f"Deployment aborted. Check the logs with: "
                f"sudo journalctl -u {self.config.service_name} -f"
            )
            return self._result(DeploymentOutcome.STEP_FAILED, mode, e)

        if health_state == HealthState.ROLLED_BACK_HEALTHY:
            outcome = DeploymentOutcome.UPGRADE_ROLLED_BACK_SUCCEEDED
            message = "Upgrade failed; rolled back to the previous version"
        elif mode == DeploymentMode.UPGRADE:
            outcome = DeploymentOutcome.UPGRADE_SUCCEEDED
            message = "Update completed successfully"
        else:
            outcome = DeploymentOutcome.FRESH_INSTALL_SUCCEEDED
            message = "Installation completed successfully"

        self.logger.info(message)
        return DeploymentResult(
            outcome=outcome,
            mode=mode,
            message=message,
            health_state=health_state,
        )

    async def _deploy(self, mode: DeploymentMode) -> HealthState:
        if mode == DeploymentMode.FRESH_INSTALL:
            await self.swap_manager.install_fresh()
        else:
            await self.swap_manager.upgrade()

        await self.definition_manager.install_definition()
        return await self.health_verifier.verify(mode)

    def _result(
        self,
        outcome: DeploymentOutcome,
        mode: Optional[DeploymentMode],
        error: DeployError,
    ) -> DeploymentResult:
        return DeploymentResult(
            outcome=outcome,
            mode=mode,
            message=str(error),
            error_code=error.code,
            health_state=self.health_verifier.state,
        )
