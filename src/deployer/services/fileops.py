"""Privileged filesystem changes, run as external commands behind the elevation prefix."""

import asyncio
from pathlib import Path
from typing import Optional, Sequence
import logging


class FileOperator:
    """Runs ``install``/``cp``/``mv``/``rm`` with the elevation command.

    The deployer itself never runs as root. Content is prepared in a
    directory the invoker owns and only the final placement in the install
    or unit directory goes through these commands.

    Failures are raised as OSError (TimeoutError for a hung command), so
    callers treat them like local filesystem errors.
    """

    COMMAND_TIMEOUT = 30.0

    def __init__(
        self,
        command_prefix: Optional[Sequence[str]] = None,
        command_timeout: Optional[float] = None,
    ):
        """Initialize file operator.

        Args:
            command_prefix: Elevation command placed before each tool (``sudo``)
            command_timeout: Upper bound for a single command
        """
        self.logger = logging.getLogger("deployer.fileops")
        self.command_prefix = list(command_prefix or [])
        self.command_timeout = command_timeout or self.COMMAND_TIMEOUT

    async def _run(self, *args: str) -> None:
        command = [*self.command_prefix, *args]
        self.logger.debug(f"Running: {' '.join(command)}")

        # FileNotFoundError for a missing tool is already an OSError
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.command_timeout
            )
        except asyncio.TimeoutError as e:
            process.kill()
            raise TimeoutError(
                f"'{' '.join(args)}' timed out after {self.command_timeout}s"
            ) from e

        if process.returncode != 0:
            detail = (stderr or stdout or b"").decode().strip()
            raise OSError(
                f"'{' '.join(command)}' failed with exit code {process.returncode}: {detail}"
            )

    async def make_dir(self, path: Path, owner: str, group: str, mode: int = 0o755) -> None:
        """Create path (and parents) owned by owner:group."""
        await self._run(
            "install", "-d", "-m", f"{mode:o}", "-o", owner, "-g", group, str(path)
        )

    async def install_file(
        self,
        source: Path,
        target: Path,
        mode: int,
        owner: Optional[str] = None,
        group: Optional[str] = None,
    ) -> None:
        """Copy source to target with mode and ownership applied in one step.

        Missing parent directories of target are created. Ownership is left
        to the elevated identity when owner/group are None.
        """
        args = ["install", "-D", "-m", f"{mode:o}"]
        if owner:
            args += ["-o", owner]
        if group:
            args += ["-g", group]
        await self._run(*args, str(source), str(target))

    async def copy(self, source: Path, target: Path) -> None:
        """Copy keeping mode, ownership and timestamps."""
        await self._run("cp", "-p", str(source), str(target))

    async def move(self, source: Path, target: Path) -> None:
        """Rename source over target; atomic within one filesystem."""
        await self._run("mv", "-f", "-T", str(source), str(target))

    async def remove(self, path: Path) -> None:
        await self._run("rm", "-f", str(path))
