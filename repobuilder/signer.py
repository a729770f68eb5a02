"""Client for the notary service that signs repository metadata."""

import logging
from pathlib import Path

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from repobuilder.errors import SigningError

logger = logging.getLogger(__name__)


class Signer:
    """Submits files to the notary service and stores detached signatures."""

    def __init__(
        self,
        notary_url: str,
        key_name: str,
        auth_token: str,
        timeout: int = 120,
        max_retries: int = 5,
        comment: str = "repobuilder repository signing",
    ):
        """Initialize the signer.

        Args:
            notary_url: URL of the notary signing endpoint
            key_name: Name of the notary key to sign with
            auth_token: Notary auth token
            timeout: Request timeout in seconds
            max_retries: Maximum number of retry attempts
            comment: Comment recorded by the notary with each request
        """
        self.notary_url = notary_url
        self.key_name = key_name
        self.auth_token = auth_token
        self.timeout = timeout
        self.max_retries = max_retries
        self.comment = comment
        self.session = self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry configuration."""
        session = requests.Session()

        # Configure retry strategy with exponential backoff
        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=1,  # 1, 2, 4, 8... seconds
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["POST"],
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        return session

    def close(self) -> None:
        self.session.close()

    def sign(self, path: str | Path, extension: str, overwrite: bool = False) -> Path:
        """Sign a file, writing the detached signature to <path>.<extension>.

        When overwrite is false and the signature already exists the call
        does nothing.

        Args:
            path: File to sign
            extension: Signature extension, e.g. "gpg" or "asc"
            overwrite: Replace an existing signature

        Returns:
            Path of the signature file

        Raises:
            SigningError: If the notary is misconfigured or does not return
                a signature
        """
        path = Path(path)
        if extension.startswith("."):
            logger.warning(
                f"Signature extension {extension!r} has a leading dot, which is usually a problem"
            )
            extension = extension.lstrip(".")

        signature_path = path.with_name(f"{path.name}.{extension}")
        if signature_path.exists() and not overwrite:
            logger.info(f"Signature {signature_path} already exists, not signing again")
            return signature_path

        if not self.notary_url:
            raise SigningError("no notary service url configured")
        if not self.key_name or not self.auth_token:
            raise SigningError(
                "notary credentials are incomplete: both a key name and an auth token are required"
            )
        if not path.is_file():
            raise SigningError(f"cannot sign {path}: file does not exist")

        logger.info(
            f"Submitting {path} to the notary service",
            extra={"notary_url": self.notary_url, "key_name": self.key_name, "extension": extension},
        )

        try:
            with open(path, "rb") as f:
                response = self.session.post(
                    self.notary_url,
                    files={"file": (path.name, f)},
                    data={
                        "key_name": self.key_name,
                        "auth_token": self.auth_token,
                        "extension": extension,
                        "comment": self.comment,
                    },
                    timeout=self.timeout,
                )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to sign {path} after {self.max_retries} retries: {e}")
            raise SigningError(f"notary service could not sign {path}: {e}") from e

        if not response.content:
            raise SigningError(f"notary service returned an empty signature for {path}")

        signature_path.write_bytes(response.content)
        logger.info(f"Wrote signature {signature_path} ({len(response.content)} bytes)")
        return signature_path
