"""Binary swap manager: install, back up, replace and restore the service binary."""

import tempfile
from pathlib import Path
import logging

from deployer.errors import BackupError, FilePermissionError, ServiceControlError
from deployer.models.config import DeployConfig
from deployer.services.download import DownloadService
from deployer.services.fileops import FileOperator
from deployer.services.process import ProcessManager

BINARY_MODE = 0o755


class BinarySwapManager:
    """Mutates the installed binary on disk.

    Downloads land in a private temp directory first. The canonical path is
    only ever replaced by renaming a sibling staging file over it, so it
    holds either the old or the new binary and never a partial download.
    Every write under the install directory goes through FileOperator.
    """

    def __init__(
        self,
        config: DeployConfig,
        process_manager: ProcessManager,
        download_service: DownloadService,
        file_operator: FileOperator,
    ):
        """Initialize swap manager.

        Args:
            config: Deployment configuration
            process_manager: Service control (used for the pre-upgrade stop)
            download_service: Artifact source
            file_operator: Elevated file placement
        """
        self.logger = logging.getLogger("deployer.swap")
        self.config = config
        self.process_manager = process_manager
        self.download_service = download_service
        self.file_operator = file_operator

    @property
    def _staging_path(self) -> Path:
        return self.config.install_dir / f".{self.config.binary_name}.download"

    def backup_exists(self) -> bool:
        return self.config.backup_path.exists()

    async def install_fresh(self) -> None:
        """Create the install directory and download the binary into it.

        Raises:
            FilePermissionError: Directory, mode or ownership cannot be applied
            ArtifactFetchError: Download failed
        """
        install_dir = self.config.install_dir
        user, group = self.config.service_user, self.config.service_group
        self.logger.info(f"Creating installation directory: {install_dir} ({user}:{group})")
        try:
            await self.file_operator.make_dir(install_dir, user, group)
        except OSError as e:
            raise FilePermissionError(f"Cannot create {install_dir}: {e}") from e

        await self._fetch_into_place()

    async def upgrade(self) -> None:
        """Stop the service, back up the binary and replace it.

        On download failure the canonical binary is untouched, the backup is
        left in place and the service is not restarted.

        Raises:
            BackupError: Backup copy failed; nothing was replaced
            ArtifactFetchError: Download failed
            FilePermissionError: Mode or ownership cannot be applied
        """
        await self._stop_if_running()
        await self._take_backup()
        await self._fetch_into_place()

    async def restore_backup(self) -> None:
        """Put the backup back at the canonical path. The backup is kept.

        Raises:
            BackupError: Backup missing or cannot be copied
        """
        backup_path = self.config.backup_path
        binary_path = self.config.binary_path
        if not backup_path.exists():
            raise BackupError(f"No backup to restore at {backup_path}")

        self.logger.info(f"Restoring {binary_path} from {backup_path}")
        try:
            # Copy then rename: the crashing binary may still be executing
            await self._place(backup_path)
        except OSError as e:
            raise BackupError(f"Failed to restore {binary_path} from backup: {e}") from e

    async def remove_backup(self) -> None:
        backup_path = self.config.backup_path
        try:
            await self.file_operator.remove(backup_path)
        except OSError as e:
            # A stale backup is overwritten by the next upgrade
            self.logger.warning(f"Could not remove {backup_path}: {e}")
            return
        self.logger.debug(f"Removed backup {backup_path}")

    async def _stop_if_running(self) -> None:
        """Best-effort stop; a stuck stop must not block the replacement."""
        service_name = self.config.service_name
        if not await self.process_manager.is_active(service_name):
            return

        self.logger.info("Stopping existing service...")
        try:
            await self.process_manager.stop_service(service_name)
        except (ServiceControlError, TimeoutError) as e:
            self.logger.warning(f"Could not stop {service_name}, continuing: {e}")

    async def _take_backup(self) -> None:
        binary_path = self.config.binary_path
        backup_path = self.config.backup_path
        self.logger.info("Backing up existing binary...")
        try:
            await self.file_operator.copy(binary_path, backup_path)
        except OSError as e:
            raise BackupError(f"Cannot back up {binary_path} to {backup_path}: {e}") from e

    async def _fetch_into_place(self) -> None:
        """Download into a private temp dir, then stage and rename into place."""
        binary_path = self.config.binary_path

        with tempfile.TemporaryDirectory(prefix="deployer-") as tmp_dir:
            download_path = Path(tmp_dir) / self.config.binary_name
            await self.download_service.fetch(self.config.download_url, download_path)

            try:
                await self._place(download_path)
            except OSError as e:
                raise FilePermissionError(
                    f"Cannot move new binary into {binary_path}: {e}"
                ) from e

    async def _place(self, source: Path) -> None:
        """Stage source next to the binary with final mode/owner, then rename it over."""
        staging = self._staging_path
        try:
            await self.file_operator.install_file(
                source,
                staging,
                BINARY_MODE,
                owner=self.config.service_user,
                group=self.config.service_group,
            )
            await self.file_operator.move(staging, self.config.binary_path)
        except OSError:
            await self._discard(staging)
            raise

    async def _discard(self, path: Path) -> None:
        try:
            await self.file_operator.remove(path)
        except OSError as e:
            self.logger.warning(f"Could not clean up {path}: {e}")
