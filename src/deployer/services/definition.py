"""Render and install the systemd unit for the managed service."""

import tempfile
from pathlib import Path
import logging

from deployer.errors import DefinitionInstallError, ServiceControlError
from deployer.models.config import DeployConfig
from deployer.services.fileops import FileOperator
from deployer.services.process import ProcessManager

UNIT_MODE = 0o644

UNIT_TEMPLATE = """\
[Unit]
Description={description}
{ordering}
[Service]
Type=simple
User={user}
Group={group}
WorkingDirectory={working_directory}
ExecStart={exec_start}
Restart=always
RestartSec={restart_sec}
StandardOutput=journal
StandardError=journal
SyslogIdentifier={service_name}

# Environment variables (customize as needed)
{environment}
[Install]
WantedBy=multi-user.target
"""


def escape_specifiers(value: str) -> str:
    """Keep systemd from expanding ``%`` specifiers in a literal value."""
    return value.replace("%", "%%")


def quote_assignment(key: str, value: str) -> str:
    """Render one Environment= operand as a single double-quoted word."""
    assignment = f"{key}={value}".replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escape_specifiers(assignment)}"'


class ServiceDefinitionManager:
    """Writes the unit file from scratch on every run, then reloads systemd."""

    def __init__(
        self,
        config: DeployConfig,
        process_manager: ProcessManager,
        file_operator: FileOperator,
    ):
        self.logger = logging.getLogger("deployer.definition")
        self.config = config
        self.process_manager = process_manager
        self.file_operator = file_operator

    def render(self) -> str:
        """Render the full unit text. Same config, same bytes."""
        config = self.config

        ordering = "After=" + " ".join(["network.target", *config.runtime_dependencies]) + "\n"
        if config.runtime_dependencies:
            ordering += "Wants=" + " ".join(config.runtime_dependencies) + "\n"

        environment_lines = [
            f"Environment={quote_assignment(key, value)}"
            for key, value in config.environment.items()
        ]
        environment_lines += [
            f"# Environment={quote_assignment(key, value)}"
            for key, value in config.placeholder_environment.items()
        ]
        environment = "".join(f"{line}\n" for line in environment_lines)

        return UNIT_TEMPLATE.format(
            description=escape_specifiers(config.description),
            ordering=ordering,
            user=config.service_user,
            group=config.service_group,
            working_directory=config.install_dir,
            exec_start=config.binary_path,
            restart_sec=config.restart_sec,
            service_name=config.service_name,
            environment=environment,
        )

    async def install_definition(self) -> None:
        """Write the unit file and ask systemd to reload definitions.

        Raises:
            DefinitionInstallError: Write or reload failed
        """
        unit_path = self.config.unit_path
        staging = unit_path.parent / f".{unit_path.name}.tmp"
        self.logger.info("Creating/updating systemd service file...")

        with tempfile.TemporaryDirectory(prefix="deployer-") as tmp_dir:
            rendered = Path(tmp_dir) / unit_path.name
            try:
                rendered.write_text(self.render(), encoding="utf-8")
                await self.file_operator.install_file(rendered, staging, UNIT_MODE)
                await self.file_operator.move(staging, unit_path)
            except OSError as e:
                await self._discard(staging)
                raise DefinitionInstallError(f"Cannot write {unit_path}: {e}") from e

        try:
            await self.process_manager.daemon_reload()
        except ServiceControlError as e:
            raise DefinitionInstallError(f"Reload after writing {unit_path} failed: {e}") from e

        self.logger.debug(f"Installed unit definition at {unit_path}")

    async def _discard(self, path: Path) -> None:
        try:
            await self.file_operator.remove(path)
        except OSError as e:
            self.logger.warning(f"Could not clean up {path}: {e}")
