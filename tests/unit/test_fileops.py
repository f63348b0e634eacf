"""Unit tests for FileOperator."""

import asyncio
import stat
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from deployer.services.fileops import FileOperator


def _completed(stdout=b"", stderr=b"", returncode=0):
    """Mock asyncio subprocess that already finished."""
    mock_process = AsyncMock()
    mock_process.communicate = AsyncMock(return_value=(stdout, stderr))
    mock_process.returncode = returncode
    mock_process.kill = MagicMock()
    return mock_process


@pytest.mark.unit
class TestFileOperatorCommands:
    """Command lines built by FileOperator, subprocess mocked."""

    @pytest.fixture
    def file_operator(self):
        return FileOperator(command_prefix=["sudo"])

    @pytest.mark.asyncio
    async def test_make_dir_is_elevated(self, file_operator):
        with patch('asyncio.create_subprocess_exec', return_value=_completed()) as mock_exec:
            await file_operator.make_dir(Path("/home/vm/goniter-bin"), "vm", "vm")

        assert mock_exec.call_args[0] == (
            "sudo", "install", "-d", "-m", "755", "-o", "vm", "-g", "vm", "/home/vm/goniter-bin",
        )

    @pytest.mark.asyncio
    async def test_install_file_with_owner(self, file_operator):
        with patch('asyncio.create_subprocess_exec', return_value=_completed()) as mock_exec:
            await file_operator.install_file(
                Path("/tmp/x/goniter"), Path("/opt/bin/.goniter.download"), 0o755, "vm", "vm"
            )

        assert mock_exec.call_args[0] == (
            "sudo", "install", "-D", "-m", "755", "-o", "vm", "-g", "vm",
            "/tmp/x/goniter", "/opt/bin/.goniter.download",
        )

    @pytest.mark.asyncio
    async def test_install_file_without_owner(self, file_operator):
        with patch('asyncio.create_subprocess_exec', return_value=_completed()) as mock_exec:
            await file_operator.install_file(Path("/tmp/u"), Path("/etc/u.service"), 0o644)

        assert mock_exec.call_args[0] == (
            "sudo", "install", "-D", "-m", "644", "/tmp/u", "/etc/u.service",
        )

    @pytest.mark.asyncio
    async def test_copy_move_remove_are_elevated(self, file_operator):
        with patch('asyncio.create_subprocess_exec', return_value=_completed()) as mock_exec:
            await file_operator.copy(Path("/a"), Path("/b"))
            await file_operator.move(Path("/b"), Path("/c"))
            await file_operator.remove(Path("/c"))

        commands = [c[0] for c in mock_exec.call_args_list]
        assert commands == [
            ("sudo", "cp", "-p", "/a", "/b"),
            ("sudo", "mv", "-f", "-T", "/b", "/c"),
            ("sudo", "rm", "-f", "/c"),
        ]

    @pytest.mark.asyncio
    async def test_no_prefix(self):
        with patch('asyncio.create_subprocess_exec', return_value=_completed()) as mock_exec:
            await FileOperator().remove(Path("/c"))

        assert mock_exec.call_args[0] == ("rm", "-f", "/c")

    @pytest.mark.asyncio
    async def test_nonzero_exit_raises_oserror(self, file_operator):
        failed = _completed(stderr=b"install: invalid user 'nobody2'\n", returncode=1)
        with patch('asyncio.create_subprocess_exec', return_value=failed):
            with pytest.raises(OSError, match="invalid user 'nobody2'"):
                await file_operator.make_dir(Path("/x"), "nobody2", "nobody2")

    @pytest.mark.asyncio
    async def test_missing_tool_raises_oserror(self, file_operator):
        with patch('asyncio.create_subprocess_exec', side_effect=FileNotFoundError("sudo")):
            with pytest.raises(OSError):
                await file_operator.remove(Path("/x"))

    @pytest.mark.asyncio
    async def test_timeout_kills_command(self):
        file_operator = FileOperator(command_timeout=0.01)
        mock_process = _completed()

        async def hang():
            await asyncio.sleep(1)

        mock_process.communicate = hang

        with patch('asyncio.create_subprocess_exec', return_value=mock_process):
            with pytest.raises(TimeoutError, match="timed out"):
                await file_operator.copy(Path("/a"), Path("/b"))

        mock_process.kill.assert_called_once()


@pytest.mark.unit
class TestFileOperatorOnDisk:
    """Real install/cp/mv/rm without elevation against tmp_path."""

    @pytest.mark.asyncio
    async def test_install_then_move(self, tmp_path, current_identity):
        user, group = current_identity
        source = tmp_path / "src.bin"
        source.write_bytes(b"payload")
        staging = tmp_path / "dest" / ".bin.download"
        target = tmp_path / "dest" / "bin"
        file_operator = FileOperator()

        await file_operator.install_file(source, staging, 0o755, user, group)
        await file_operator.move(staging, target)

        assert target.read_bytes() == b"payload"
        assert stat.S_IMODE(target.stat().st_mode) == 0o755
        assert not staging.exists()

    @pytest.mark.asyncio
    async def test_remove_missing_is_noop(self, tmp_path):
        await FileOperator().remove(tmp_path / "missing")

    @pytest.mark.asyncio
    async def test_copy_missing_source_fails(self, tmp_path):
        with pytest.raises(OSError, match="exit code"):
            await FileOperator().copy(tmp_path / "missing", tmp_path / "b")
