"""Unit tests for repobuilder/utils.py."""

import gzip
import shutil
import threading
from unittest.mock import Mock, patch

import pytest

from repobuilder.errors import ExternalToolError, JobCancelledError
from repobuilder.utils import gzip_and_write_file, raise_if_cancelled, run_command


class TestRunCommand:
    @patch("repobuilder.utils.subprocess.run")
    def test_returns_stdout(self, mock_run, tmp_path):
        mock_run.return_value = Mock(returncode=0, stdout="Package: x\n", stderr="")

        assert run_command(["dpkg-scanpackages", "binary-amd64"], cwd=tmp_path) == "Package: x\n"
        mock_run.assert_called_once_with(
            ["dpkg-scanpackages", "binary-amd64"],
            cwd=str(tmp_path),
            capture_output=True,
            text=True,
            check=False,
        )

    @patch("repobuilder.utils.subprocess.run")
    def test_non_zero_exit_raises(self, mock_run):
        mock_run.return_value = Mock(returncode=2, stdout="partial", stderr="boom")

        with pytest.raises(ExternalToolError) as excinfo:
            run_command(["createrepo", "-d", "/repo"])

        err = excinfo.value
        assert err.returncode == 2
        assert err.command == ["createrepo", "-d", "/repo"]
        assert err.output == "partial\nboom"
        assert err.phase == "rebuild"
        assert "exited with status 2" in str(err)

    @patch("repobuilder.utils.subprocess.run", side_effect=FileNotFoundError("no such file"))
    def test_missing_tool_raises(self, mock_run):
        with pytest.raises(ExternalToolError, match="could not run 'apt-ftparchive'"):
            run_command(["apt-ftparchive", "release", "../"])

    @pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")
    def test_real_process(self, tmp_path):
        assert run_command(["sh", "-c", "printf hello"], cwd=tmp_path) == "hello"
        with pytest.raises(ExternalToolError):
            run_command(["sh", "-c", "exit 3"])


class TestGzipAndWriteFile:
    def test_round_trip(self, tmp_path):
        target = tmp_path / "Packages.gz"
        gzip_and_write_file(target, b"Package: mongodb-org\n")
        assert gzip.decompress(target.read_bytes()) == b"Package: mongodb-org\n"

    def test_deterministic(self, tmp_path):
        gzip_and_write_file(tmp_path / "a.gz", b"same")
        gzip_and_write_file(tmp_path / "b.gz", b"same")
        assert (tmp_path / "a.gz").read_bytes() == (tmp_path / "b.gz").read_bytes()

    def test_empty_content(self, tmp_path):
        gzip_and_write_file(tmp_path / "Packages.gz", b"")
        assert gzip.decompress((tmp_path / "Packages.gz").read_bytes()) == b""


class TestRaiseIfCancelled:
    def test_no_event(self):
        raise_if_cancelled(None, "sign")

    def test_unset_event(self):
        raise_if_cancelled(threading.Event(), "sign")

    def test_set_event(self):
        event = threading.Event()
        event.set()
        with pytest.raises(JobCancelledError, match="cancelled before sign"):
            raise_if_cancelled(event, "sign")
