"""Classify a run as fresh install or upgrade."""

from pathlib import Path
import logging

from deployer.errors import PreconditionError
from deployer.models.status import DeploymentMode


def detect_mode(binary_path: Path) -> DeploymentMode:
    """Return UPGRADE if a regular file sits at binary_path, else FRESH_INSTALL.

    Called exactly once per run; everything downstream takes the mode as a
    parameter instead of looking at the filesystem again.

    Raises:
        PreconditionError: Something other than a regular file is in the way
    """
    logger = logging.getLogger("deployer.detector")

    if binary_path.is_file():
        logger.info("Binary already exists. Updating...")
        return DeploymentMode.UPGRADE

    if binary_path.exists() or binary_path.is_symlink():
        raise PreconditionError(f"{binary_path} exists but is not a regular file")

    logger.info("Binary not found. Starting fresh installation...")
    return DeploymentMode.FRESH_INSTALL
