"""Command-line entry point for the service deployer.

Takes no arguments: configuration comes from DeployConfig defaults plus
DEPLOYER_* environment overrides, everything else from host state.
"""

import asyncio
import logging
import sys
from typing import Optional

from pydantic import ValidationError

from deployer.models.config import DeployConfig
from deployer.models.status import DeploymentResult
from deployer.services.orchestrator import Orchestrator
from deployer.utils.logging import setup_logger


def service_summary(config: DeployConfig) -> str:
    """Operator-facing summary printed after a successful run."""
    name = config.service_name
    return "\n".join(
        [
            "",
            "Service Information:",
            f"  Service Name: {name}",
            f"  Binary Location: {config.binary_path}",
            f"  Service User: {config.service_user}",
            "",
            "Useful Commands:",
            f"  Check service status: sudo systemctl status {name}",
            f"  View service logs: sudo journalctl -u {name} -f",
            f"  Stop service: sudo systemctl stop {name}",
            f"  Start service: sudo systemctl start {name}",
            f"  Restart service: sudo systemctl restart {name}",
            f"  Disable service: sudo systemctl disable {name}",
            "",
        ]
    )


async def deploy(config: DeployConfig) -> DeploymentResult:
    orchestrator = Orchestrator(config)
    return await orchestrator.run()


def main(environ: Optional[dict[str, str]] = None) -> int:
    """Run one deployment and return the process exit code."""
    try:
        config = DeployConfig.from_env(environ)
    except (ValidationError, ValueError) as e:
        logger = setup_logger("deployer")
        logger.error(f"Invalid configuration: {e}")
        return 1

    logger = setup_logger(
        "deployer",
        str(config.log_file) if config.log_file else None,
        level=getattr(logging, config.log_level.upper(), logging.INFO),
    )

    result = asyncio.run(deploy(config))
    logger.debug(f"Deployment result: {result.model_dump_json()}")

    if result.exit_code == 0:
        print(service_summary(config))
        logger.info("The service will start automatically on boot.")

    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
