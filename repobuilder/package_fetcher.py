"""Resolves the package inputs of a build job into local files."""

import logging
import tarfile
import zipfile
from pathlib import Path
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from repobuilder.errors import PackageDownloadError

logger = logging.getLogger(__name__)

PACKAGE_SUFFIXES = (".deb", ".rpm")
TAR_SUFFIXES = (".tar.gz", ".tgz", ".tar")


def is_remote(package: str) -> bool:
    return package.startswith("http")


class PackageFetcher:
    """Downloads remote packages and expands downloaded archives.

    Local paths are passed through untouched; http(s) URLs are fetched into
    the download directory. A downloaded archive is unpacked next to itself
    and every package found inside it replaces the archive in the result.
    """

    def __init__(self, download_dir: str | Path, timeout: int = 300, max_retries: int = 3):
        """Initialize the package fetcher.

        Args:
            download_dir: Directory to store downloaded files
            timeout: Request timeout in seconds
            max_retries: Maximum number of retry attempts per download
        """
        self.download_dir = Path(download_dir)
        self.timeout = timeout
        self.max_retries = max_retries
        self._session: requests.Session | None = None

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = self._create_session()
        return self._session

    def _create_session(self) -> requests.Session:
        session = requests.Session()

        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        return session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def fetch(self, packages: list[str]) -> list[str]:
        """Return local paths for every package input.

        Args:
            packages: Local paths or http(s) URLs

        Returns:
            Local package paths, in input order

        Raises:
            PackageDownloadError: If a download or archive expansion fails
        """
        resolved = []
        for package in packages:
            if not is_remote(package):
                resolved.append(package)
                continue

            path = self._download(package)
            if _is_archive(path):
                resolved.extend(str(p) for p in self._expand(path, package))
            else:
                resolved.append(str(path))

        return resolved

    def _download(self, url: str) -> Path:
        filename = Path(urlparse(url).path).name
        if not filename:
            raise PackageDownloadError(url, "URL does not name a file")

        self.download_dir.mkdir(parents=True, exist_ok=True)
        target_path = self.download_dir / filename
        logger.info(f"Downloading {filename} from {url}")

        try:
            with self.session.get(url, timeout=self.timeout, stream=True) as response:
                response.raise_for_status()

                with open(target_path, "wb") as f:
                    for chunk in response.iter_content(chunk_size=8192):
                        if chunk:
                            f.write(chunk)
        except (requests.RequestException, OSError) as e:
            logger.error(f"Failed to download {filename} from {url}: {e}")
            target_path.unlink(missing_ok=True)
            raise PackageDownloadError(url, str(e)) from e

        logger.info(f"Downloaded {filename} ({target_path.stat().st_size} bytes)")
        return target_path

    def _expand(self, archive: Path, source: str) -> list[Path]:
        dest = self.download_dir / f"{archive.name}.d"
        dest.mkdir(parents=True, exist_ok=True)

        try:
            if zipfile.is_zipfile(archive):
                with zipfile.ZipFile(archive) as zf:
                    zf.extractall(dest)
            else:
                with tarfile.open(archive) as tf:
                    tf.extractall(dest, filter="data")
        except (tarfile.TarError, zipfile.BadZipFile, OSError) as e:
            raise PackageDownloadError(source, f"could not expand {archive.name}: {e}") from e

        found = sorted(
            path for path in dest.rglob("*")
            if path.is_file() and path.suffix in PACKAGE_SUFFIXES
        )
        logger.info(f"Found {len(found)} packages in {archive.name}")
        return found


def _is_archive(path: Path) -> bool:
    return path.name.endswith(TAR_SUFFIXES) or path.suffix == ".zip"
