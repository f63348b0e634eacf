"""Status enums and result model for deployment runs."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class DeploymentMode(str, Enum):
    """Classification of a run, decided once by the detector."""

    FRESH_INSTALL = "fresh-install"
    UPGRADE = "upgrade"


class HealthState(str, Enum):
    """Health verification lifecycle.

    State transitions:
    starting → healthy
        ↓
    unhealthy → rolling_back → rolled_back_healthy
                     ↓
               rolled_back_unhealthy
    """

    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK_HEALTHY = "rolled_back_healthy"
    ROLLED_BACK_UNHEALTHY = "rolled_back_unhealthy"


class DeploymentOutcome(str, Enum):
    """Terminal result of one invocation."""

    FRESH_INSTALL_SUCCEEDED = "fresh-install-succeeded"
    UPGRADE_SUCCEEDED = "upgrade-succeeded"
    UPGRADE_ROLLED_BACK_SUCCEEDED = "upgrade-rolled-back-succeeded"
    UPGRADE_ROLLED_BACK_FAILED = "upgrade-rolled-back-failed"
    PRECONDITION_FAILED = "precondition-failed"
    STEP_FAILED = "step-failed"

    @property
    def exit_code(self) -> int:
        """Process exit code for this outcome."""
        return 0 if self in _SUCCESS_OUTCOMES else 1


_SUCCESS_OUTCOMES = frozenset(
    {
        DeploymentOutcome.FRESH_INSTALL_SUCCEEDED,
        DeploymentOutcome.UPGRADE_SUCCEEDED,
        DeploymentOutcome.UPGRADE_ROLLED_BACK_SUCCEEDED,
    }
)


class DeploymentResult(BaseModel):
    """What the orchestrator reports once per run."""

    outcome: DeploymentOutcome = Field(..., description="Terminal outcome")
    mode: Optional[DeploymentMode] = Field(
        None, description="Detected mode (absent if preconditions failed)"
    )
    message: str = Field(..., description="Human-readable status line")
    error_code: Optional[str] = Field(
        None, description="DeployError code when the run did not fully succeed"
    )
    health_state: Optional[HealthState] = Field(
        None, description="Final health state if verification ran"
    )

    @property
    def exit_code(self) -> int:
        return self.outcome.exit_code
