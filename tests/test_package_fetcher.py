"""Unit tests for the package fetcher."""

import io
import tarfile
import zipfile
from unittest.mock import MagicMock, patch

import pytest
import requests

from repobuilder.errors import PackageDownloadError
from repobuilder.package_fetcher import PackageFetcher, is_remote


def _response(content: bytes = b""):
    response = MagicMock()
    response.__enter__.return_value = response
    response.raise_for_status.return_value = None
    response.iter_content.return_value = [content[i:i + 4] for i in range(0, len(content), 4)]
    return response


def _tarball(members: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tf:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def _zipball(members: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return buffer.getvalue()


@pytest.fixture
def fetcher(tmp_path):
    fetcher = PackageFetcher(tmp_path / "downloads")
    yield fetcher
    fetcher.close()


def test_is_remote():
    assert is_remote("https://downloads.example.com/a.deb")
    assert not is_remote("/build/a.deb")


def test_local_paths_pass_through(fetcher):
    assert fetcher.fetch(["/build/a.deb", "b.rpm"]) == ["/build/a.deb", "b.rpm"]
    assert fetcher._session is None


def test_downloads_package(fetcher, tmp_path):
    url = "https://downloads.example.com/release/mongodb-org-4.4.0.amd64.deb"

    with patch.object(fetcher.session, "get", return_value=_response(b"deb payload")) as get:
        result = fetcher.fetch([url])

    get.assert_called_once_with(url, timeout=300, stream=True)
    target = tmp_path / "downloads" / "mongodb-org-4.4.0.amd64.deb"
    assert result == [str(target)]
    assert target.read_bytes() == b"deb payload"


def test_expands_tarball(fetcher):
    payload = _tarball({
        "dist/mongodb-org-4.4.0.amd64.deb": b"deb",
        "dist/mongodb-org-4.4.0.x86_64.rpm": b"rpm",
        "dist/README": b"readme",
    })

    with patch.object(fetcher.session, "get", return_value=_response(payload)):
        result = fetcher.fetch(["/build/local.deb", "https://downloads.example.com/packages.tgz"])

    assert result[0] == "/build/local.deb"
    assert [r.rsplit("/", 1)[1] for r in result[1:]] == [
        "mongodb-org-4.4.0.amd64.deb",
        "mongodb-org-4.4.0.x86_64.rpm",
    ]


def test_expands_zip(fetcher):
    payload = _zipball({"mongodb-org-4.4.0.x86_64.rpm": b"rpm"})

    with patch.object(fetcher.session, "get", return_value=_response(payload)):
        result = fetcher.fetch(["https://downloads.example.com/packages.zip"])

    assert len(result) == 1
    assert result[0].endswith("packages.zip.d/mongodb-org-4.4.0.x86_64.rpm")


def test_http_error(fetcher, tmp_path):
    response = _response()
    response.raise_for_status.side_effect = requests.HTTPError("404 Not Found")

    with patch.object(fetcher.session, "get", return_value=response):
        with pytest.raises(PackageDownloadError, match="404 Not Found") as excinfo:
            fetcher.fetch(["https://downloads.example.com/missing.deb"])

    assert excinfo.value.phase == "download"
    assert not (tmp_path / "downloads" / "missing.deb").exists()
    response.__exit__.assert_called_once()


def test_write_failure_closes_response(fetcher, tmp_path):
    response = _response(b"partial payload")
    response.iter_content.side_effect = OSError(28, "No space left on device")

    with patch.object(fetcher.session, "get", return_value=response):
        with pytest.raises(PackageDownloadError, match="No space left on device"):
            fetcher.fetch(["https://downloads.example.com/mongodb-org-4.4.0.amd64.deb"])

    response.__exit__.assert_called_once()
    assert not (tmp_path / "downloads" / "mongodb-org-4.4.0.amd64.deb").exists()


def test_corrupt_archive(fetcher):
    with patch.object(fetcher.session, "get", return_value=_response(b"not a tarball")):
        with pytest.raises(PackageDownloadError, match="could not expand packages.tar.gz"):
            fetcher.fetch(["https://downloads.example.com/packages.tar.gz"])


def test_url_without_filename(fetcher):
    with pytest.raises(PackageDownloadError, match="does not name a file"):
        fetcher.fetch(["https://downloads.example.com/"])
