"""Unit tests for the notary signer."""

from unittest.mock import Mock, patch

import pytest
import requests

from repobuilder.errors import SigningError
from repobuilder.signer import Signer

NOTARY_URL = "https://notary.example.com/api/sign"


@pytest.fixture
def signer():
    return Signer(NOTARY_URL, "server-4.4", "secret-token")


@pytest.fixture
def release_file(tmp_path):
    path = tmp_path / "Release"
    path.write_text("Codename: buster\n")
    return path


def _response(content=b"-----BEGIN PGP SIGNATURE-----\n", status=200):
    response = Mock()
    response.content = content
    response.status_code = status
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    else:
        response.raise_for_status.return_value = None
    return response


class TestSign:
    def test_writes_signature(self, signer, release_file):
        with patch.object(signer.session, "post", return_value=_response()) as mock_post:
            signature = signer.sign(release_file, "gpg")

        assert signature == release_file.with_name("Release.gpg")
        assert signature.read_bytes() == b"-----BEGIN PGP SIGNATURE-----\n"

        args, kwargs = mock_post.call_args
        assert args == (NOTARY_URL,)
        assert kwargs["data"]["key_name"] == "server-4.4"
        assert kwargs["data"]["auth_token"] == "secret-token"
        assert kwargs["data"]["extension"] == "gpg"
        assert kwargs["files"]["file"][0] == "Release"

    def test_existing_signature_is_kept(self, signer, release_file):
        existing = release_file.with_name("Release.gpg")
        existing.write_bytes(b"old")

        with patch.object(signer.session, "post") as mock_post:
            assert signer.sign(release_file, "gpg", overwrite=False) == existing

        mock_post.assert_not_called()
        assert existing.read_bytes() == b"old"

    def test_overwrite_replaces_signature(self, signer, release_file):
        existing = release_file.with_name("Release.gpg")
        existing.write_bytes(b"old")

        with patch.object(signer.session, "post", return_value=_response(b"new")):
            signer.sign(release_file, "gpg", overwrite=True)

        assert existing.read_bytes() == b"new"

    def test_leading_dot_is_stripped(self, signer, tmp_path, caplog):
        repomd = tmp_path / "repomd.xml"
        repomd.write_text("<repomd/>")

        with patch.object(signer.session, "post", return_value=_response()):
            signature = signer.sign(repomd, ".asc")

        assert signature.name == "repomd.xml.asc"
        assert "leading dot" in caplog.text

    def test_http_error(self, signer, release_file):
        with patch.object(signer.session, "post", return_value=_response(status=500)):
            with pytest.raises(SigningError, match="could not sign"):
                signer.sign(release_file, "gpg")
        assert not release_file.with_name("Release.gpg").exists()

    def test_connection_error(self, signer, release_file):
        with patch.object(signer.session, "post", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(SigningError) as excinfo:
                signer.sign(release_file, "gpg")
        assert excinfo.value.phase == "sign"

    def test_empty_signature(self, signer, release_file):
        with patch.object(signer.session, "post", return_value=_response(b"")):
            with pytest.raises(SigningError, match="empty signature"):
                signer.sign(release_file, "gpg")

    def test_missing_credentials(self, release_file):
        with pytest.raises(SigningError, match="credentials are incomplete"):
            Signer(NOTARY_URL, "server-4.4", "").sign(release_file, "gpg")

    def test_missing_url(self, release_file):
        with pytest.raises(SigningError, match="no notary service url"):
            Signer("", "server-4.4", "token").sign(release_file, "gpg")

    def test_missing_file(self, signer, tmp_path):
        with pytest.raises(SigningError, match="does not exist"):
            signer.sign(tmp_path / "Release", "gpg")

    def test_token_is_not_logged(self, signer, release_file, caplog):
        caplog.set_level("DEBUG")
        with patch.object(signer.session, "post", return_value=_response()):
            signer.sign(release_file, "gpg")
        assert "secret-token" not in caplog.text


class TestSession:
    def test_retries_configured(self, signer):
        adapter = signer.session.get_adapter(NOTARY_URL)
        assert adapter.max_retries.total == 5
        assert 503 in adapter.max_retries.status_forcelist
        assert "POST" in adapter.max_retries.allowed_methods
