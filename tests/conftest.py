"""Global pytest fixtures and fakes for the deployer."""

import grp
import os
import pwd
import sys
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from deployer.errors import ArtifactFetchError, ServiceControlError  # noqa: E402
from deployer.models.config import DeployConfig  # noqa: E402
from deployer.services.fileops import FileOperator  # noqa: E402

OLD_BINARY = b"\x7fELF old known-good build"
NEW_BINARY = b"\x7fELF new build"
CRASHING_BINARY = b"\x7fELF build that exits immediately"


class FakeServiceControl:
    """In-memory stand-in for ProcessManager.

    A start or restart leaves the service active only if ``healthy()``
    says so, which lets tests tie health to the bytes on disk.
    """

    def __init__(self, active=False, healthy=None):
        self.active = active
        self.healthy = healthy or (lambda: True)
        self.calls = []
        self.enabled = set()
        self.reload_count = 0
        self.fail_stop = False
        self.fail_start = False
        self.fail_enable = False
        self.fail_reload = False

    async def is_active(self, service_name):
        return self.active

    async def start_service(self, service_name, timeout=None):
        self.calls.append(("start", service_name))
        if self.fail_start:
            self.active = False
            raise ServiceControlError("start refused", code="SERVICE_START_FAILED")
        self.active = self.healthy()

    async def restart_service(self, service_name, timeout=None):
        self.calls.append(("restart", service_name))
        self.active = self.healthy()

    async def stop_service(self, service_name, timeout=None):
        self.calls.append(("stop", service_name))
        if self.fail_stop:
            raise TimeoutError(f"SERVICE_STOP_TIMEOUT: {service_name} did not stop")
        self.active = False

    async def enable_service(self, service_name):
        self.calls.append(("enable", service_name))
        if self.fail_enable:
            raise ServiceControlError("enable refused", code="SERVICE_ENABLE_FAILED")
        self.enabled.add(service_name)

    async def daemon_reload(self):
        self.calls.append(("daemon-reload", None))
        if self.fail_reload:
            raise ServiceControlError("reload refused", code="DAEMON_RELOAD_FAILED")
        self.reload_count += 1

    def actions(self):
        return [action for action, _ in self.calls]


class FakeArtifactSource:
    """In-memory stand-in for DownloadService."""

    def __init__(self, payload=NEW_BINARY, error=None):
        self.payload = payload
        self.error = error
        self.fetched = []

    async def fetch(self, url, target_path):
        self.fetched.append((url, target_path))
        if self.error is not None:
            raise self.error
        target_path.write_bytes(self.payload)
        return len(self.payload)


@pytest.fixture
def current_identity():
    """User and group names the test process can chown to."""
    return (
        pwd.getpwuid(os.getuid()).pw_name,
        grp.getgrgid(os.getgid()).gr_name,
    )


@pytest.fixture
def deploy_config(tmp_path, current_identity):
    """DeployConfig pointing everything into tmp_path."""
    user, group = current_identity
    return DeployConfig(
        service_name="testsvc",
        binary_name="testsvc",
        install_dir=tmp_path / "opt" / "testsvc-bin",
        unit_dir=tmp_path / "systemd",
        service_user=user,
        service_group=group,
        download_url="http://artifacts.example.com/testsvc",
        elevate_command=[],
        health_settle_seconds=0,
        lock_path=tmp_path / "run" / "testsvc.lock",
    )


@pytest.fixture
def installed_binary(deploy_config):
    """An existing install holding OLD_BINARY."""
    deploy_config.install_dir.mkdir(parents=True)
    deploy_config.binary_path.write_bytes(OLD_BINARY)
    deploy_config.binary_path.chmod(0o755)
    return deploy_config.binary_path


@pytest.fixture
def file_operator():
    """Unelevated FileOperator; runs the real coreutils against tmp_path."""
    return FileOperator()


@pytest.fixture
def fake_control():
    return FakeServiceControl()


@pytest.fixture
def fake_source():
    return FakeArtifactSource()


@pytest.fixture
def failing_source():
    return FakeArtifactSource(error=ArtifactFetchError("connection refused"))
