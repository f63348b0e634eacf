"""Error taxonomy for deployment runs.

Every error carries a machine-readable code and renders as
``"<CODE>: <message>"`` so log lines and the final status line can be
grepped the same way regardless of which step failed.
"""

from typing import Optional


class DeployError(RuntimeError):
    """Base class for all deployment failures."""

    code: str = "DEPLOY_FAILED"

    def __init__(self, message: str, code: Optional[str] = None):
        if code is not None:
            self.code = code
        self.message = message
        super().__init__(f"{self.code}: {message}")


class PreconditionError(DeployError):
    """Invoking identity or host tooling is not fit for a deployment."""

    code = "PRECONDITION_FAILED"


class ArtifactFetchError(DeployError):
    """Artifact source unreachable, non-success response, or bad payload."""

    code = "ARTIFACT_FETCH_FAILED"


class BackupError(DeployError):
    """Current binary could not be snapshotted before an upgrade."""

    code = "BACKUP_FAILED"


class FilePermissionError(DeployError):
    """Directory creation, mode or ownership could not be applied."""

    code = "PERMISSION_FAILED"


class DefinitionInstallError(DeployError):
    """Service definition could not be written or reloaded."""

    code = "DEFINITION_INSTALL_FAILED"


class InstallHealthCheckError(DeployError):
    """Fresh install did not become active; there is nothing to roll back to."""

    code = "INSTALL_HEALTH_CHECK_FAILED"


class CriticalRecoveryFailure(DeployError):
    """Upgrade failed and the restored binary did not come back either."""

    code = "CRITICAL_RECOVERY_FAILURE"


class ServiceControlError(DeployError):
    """A systemctl command exited non-zero."""

    code = "SERVICE_CONTROL_FAILED"


class InvalidTransitionError(DeployError):
    """Health state machine was asked to make an illegal transition."""

    code = "INVALID_TRANSITION"
