"""Bucket drivers used to download and publish repository trees.

All drivers share one interface: open/close, sync_from (pull a prefix into a
local directory), sync_to (push a local directory under a prefix), upload,
list_keys, remove_many and dry_run_clone. S3Bucket talks to S3 through boto3,
LocalBucket keeps objects in a directory on disk, and ShadowBucket reads from
one bucket while writing into another (used for dry runs).
"""

import hashlib
import logging
import mimetypes
import os
import shutil
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from repobuilder.errors import BucketError, JobCancelledError

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = (os.cpu_count() or 2) * 2

CONTENT_TYPES = {
    ".deb": "application/vnd.debian.binary-package",
    ".rpm": "application/x-rpm",
    ".gpg": "application/pgp-signature",
    ".asc": "application/pgp-signature",
    ".gz": "application/gzip",
}


def _md5(file_path: str | Path) -> str:
    md5_hash = hashlib.md5()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            md5_hash.update(chunk)
    return md5_hash.hexdigest()


def _join_key(prefix: str, rel: str) -> str:
    prefix = prefix.strip("/")
    return f"{prefix}/{rel}" if prefix else rel


def _content_type(file_path: str | Path) -> str:
    suffix = Path(file_path).suffix
    if suffix in CONTENT_TYPES:
        return CONTENT_TYPES[suffix]
    if Path(file_path).name in ("Packages", "Release"):
        return "text/plain"
    content_type, _ = mimetypes.guess_type(str(file_path))
    return content_type or "application/octet-stream"


def _local_files(local: Path) -> list[Path]:
    if not local.exists():
        return []
    return sorted(p for p in local.rglob("*") if p.is_file())


class Bucket(ABC):
    """Interface to an object store holding repository trees."""

    name: str

    def open(self) -> None:
        """Acquire connections. Idempotent."""

    def close(self) -> None:
        """Release connections."""

    def __enter__(self) -> "Bucket":
        self.open()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    @abstractmethod
    def list_keys(self, prefix: str = "") -> dict[str, str]:
        """Return key -> md5 checksum for every object under prefix."""

    @abstractmethod
    def sync_from(
        self,
        local: str | Path,
        prefix: str,
        cancel_event: threading.Event | None = None,
    ) -> None:
        """Download every object under prefix into the local directory.

        A prefix without objects leaves an empty local directory.
        """

    @abstractmethod
    def sync_to(
        self,
        local: str | Path,
        prefix: str,
        include: Callable[[Path], bool] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        """Upload every changed file of the local directory under prefix."""

    @abstractmethod
    def upload(self, remote: str, local: str | Path) -> None:
        """Upload one local file to the remote key."""

    @abstractmethod
    def remove_many(self, keys: list[str]) -> None:
        """Delete the given keys."""

    @abstractmethod
    def dry_run_clone(self, shadow_dir: str | Path) -> "Bucket":
        """Return an independent bucket that writes into shadow_dir."""


class S3Bucket(Bucket):
    """Bucket driver backed by S3."""

    def __init__(
        self,
        name: str,
        region: str = "us-east-1",
        profile: str = "",
        aws_key: str = "",
        aws_secret: str = "",
        aws_token: str = "",
        acl: str | None = "public-read",
        workers: int = DEFAULT_WORKERS,
        max_retries: int = 10,
    ):
        """Initialize S3Bucket. No connection is made until open().

        Args:
            name: S3 bucket name
            region: AWS region
            profile: Shared credentials profile
            aws_key: Explicit access key id, overrides the profile
            aws_secret: Explicit secret access key
            aws_token: Explicit session token
            acl: Canned ACL applied to uploaded objects, None to skip
            workers: Parallel transfers during sync
            max_retries: Retry budget for each S3 call
        """
        self.name = name
        self.region = region
        self.profile = profile
        self.aws_key = aws_key
        self.aws_secret = aws_secret
        self.aws_token = aws_token
        self.acl = acl
        self.workers = max(1, workers)
        self.max_retries = max_retries
        self.s3_client = None

    def __str__(self) -> str:
        return f"s3://{self.name}"

    def open(self) -> None:
        if self.s3_client is not None:
            return

        session_args = {"region_name": self.region}
        if self.aws_key:
            session_args["aws_access_key_id"] = self.aws_key
            session_args["aws_secret_access_key"] = self.aws_secret
            if self.aws_token:
                session_args["aws_session_token"] = self.aws_token
        elif self.profile:
            session_args["profile_name"] = self.profile

        try:
            session = boto3.Session(**session_args)
            self.s3_client = session.client(
                "s3",
                config=Config(
                    retries={"max_attempts": self.max_retries, "mode": "standard"},
                    max_pool_connections=self.workers,
                ),
            )
        except (BotoCoreError, ClientError) as e:
            raise BucketError(self.name, "open", str(e)) from e

        logger.info(f"Opened S3 bucket: {self.name}")

    def close(self) -> None:
        if self.s3_client is not None:
            self.s3_client.close()
            self.s3_client = None

    def _client(self) -> Any:
        if self.s3_client is None:
            self.open()
        return self.s3_client

    def list_keys(self, prefix: str = "") -> dict[str, str]:
        prefix = prefix.strip("/")
        list_prefix = f"{prefix}/" if prefix else ""
        objects = {}

        try:
            paginator = self._client().get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.name, Prefix=list_prefix):
                for item in page.get("Contents", []):
                    objects[item["Key"]] = item.get("ETag", "").strip('"')
        except (BotoCoreError, ClientError) as e:
            raise BucketError(self.name, f"list {prefix}", str(e)) from e

        logger.debug(f"Listed {len(objects)} objects under s3://{self.name}/{prefix}")
        return objects

    def sync_from(
        self,
        local: str | Path,
        prefix: str,
        cancel_event: threading.Event | None = None,
    ) -> None:
        local = Path(local)
        local.mkdir(parents=True, exist_ok=True)
        prefix = prefix.strip("/")
        remote = self.list_keys(prefix)

        def download(key: str, checksum: str) -> None:
            rel = key[len(prefix) + 1:] if prefix else key
            if not rel or key.endswith("/"):
                return

            target = local / rel
            if target.exists() and _md5(target) == checksum:
                return

            target.parent.mkdir(parents=True, exist_ok=True)
            try:
                self._client().download_file(self.name, key, str(target))
            except (BotoCoreError, ClientError) as e:
                raise BucketError(self.name, f"download {key}", str(e)) from e

        logger.info(f"Downloading {len(remote)} objects from s3://{self.name}/{prefix} to {local}")
        self._run_parallel(
            [(download, (key, checksum)) for key, checksum in remote.items()],
            cancel_event,
        )

    def sync_to(
        self,
        local: str | Path,
        prefix: str,
        include: Callable[[Path], bool] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        local = Path(local)
        prefix = prefix.strip("/")
        remote = self.list_keys(prefix)

        tasks = []
        for path in _local_files(local):
            if include is not None and not include(path):
                continue
            key = _join_key(prefix, path.relative_to(local).as_posix())
            if remote.get(key) == _md5(path):
                continue
            tasks.append((self.upload, (key, path)))

        logger.info(f"Uploading {len(tasks)} changed files from {local} to s3://{self.name}/{prefix}")
        self._run_parallel(tasks, cancel_event)

    def upload(self, remote: str, local: str | Path) -> None:
        """Upload file to S3 with retry logic.

        Raises:
            BucketError: If all upload attempts fail
            FileNotFoundError: If local file doesn't exist
        """
        local = Path(local)
        if not local.exists():
            raise FileNotFoundError(f"File not found: {local}")

        extra_args = {"ContentType": _content_type(local)}
        if self.acl:
            extra_args["ACL"] = self.acl

        max_retries = 3
        for attempt in range(max_retries):
            try:
                logger.debug(
                    f"Uploading file {local} to s3://{self.name}/{remote} (attempt {attempt + 1})"
                )
                self._client().upload_file(str(local), self.name, remote, ExtraArgs=extra_args)
                return

            except (ClientError, BotoCoreError) as e:
                logger.warning(f"Upload attempt {attempt + 1} failed for {local}: {e}")

                if attempt == max_retries - 1:
                    logger.error(f"All upload attempts failed for {local}")
                    raise BucketError(self.name, f"upload {remote}", str(e)) from e

                # Exponential backoff
                time.sleep(2**attempt)

    def remove_many(self, keys: list[str]) -> None:
        for start in range(0, len(keys), 1000):
            batch = keys[start:start + 1000]
            try:
                self._client().delete_objects(
                    Bucket=self.name,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except (BotoCoreError, ClientError) as e:
                raise BucketError(self.name, "delete objects", str(e)) from e
        logger.info(f"Removed {len(keys)} objects from s3://{self.name}")

    def dry_run_clone(self, shadow_dir: str | Path) -> "ShadowBucket":
        source = S3Bucket(
            self.name,
            region=self.region,
            profile=self.profile,
            aws_key=self.aws_key,
            aws_secret=self.aws_secret,
            aws_token=self.aws_token,
            acl=self.acl,
            workers=self.workers,
            max_retries=self.max_retries,
        )
        return ShadowBucket(source, LocalBucket(shadow_dir))

    def _run_parallel(
        self, tasks: list[tuple[Callable, tuple]], cancel_event: threading.Event | None
    ) -> None:
        """Run transfer tasks on a thread pool.

        Once the cancellation token fires no new transfer starts; transfers
        already in flight complete.

        Raises:
            BucketError: If any transfer failed
            JobCancelledError: If transfers were skipped after cancellation
        """
        if not tasks:
            return

        def guarded(func: Callable, args: tuple) -> bool:
            if cancel_event is not None and cancel_event.is_set():
                return False
            func(*args)
            return True

        errors = []
        skipped = 0
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = [executor.submit(guarded, func, args) for func, args in tasks]
            for future in futures:
                try:
                    if not future.result():
                        skipped += 1
                except (BucketError, OSError) as e:
                    errors.append(e)

        if errors:
            if len(errors) == 1:
                raise errors[0]
            raise BucketError(
                self.name,
                "sync",
                f"{len(errors)} transfers failed: " + "; ".join(str(e) for e in errors),
            )
        if skipped:
            raise JobCancelledError(f"cancelled with {skipped} of {len(tasks)} transfers not started")


class LocalBucket(Bucket):
    """Bucket driver that stores objects as files under a root directory."""

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.name = str(self.root)

    def __str__(self) -> str:
        return f"file://{self.root}"

    def open(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root / key.strip("/")

    def list_keys(self, prefix: str = "") -> dict[str, str]:
        base = self._path(prefix) if prefix.strip("/") else self.root
        return {
            path.relative_to(self.root).as_posix(): _md5(path)
            for path in _local_files(base)
        }

    def sync_from(
        self,
        local: str | Path,
        prefix: str,
        cancel_event: threading.Event | None = None,
    ) -> None:
        local = Path(local)
        local.mkdir(parents=True, exist_ok=True)
        source = self._path(prefix) if prefix.strip("/") else self.root
        for path in _local_files(source):
            if cancel_event is not None and cancel_event.is_set():
                raise JobCancelledError(f"sync with {self} cancelled")
            target = local / path.relative_to(source)
            if target.exists() and _md5(target) == _md5(path):
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, target)

    def sync_to(
        self,
        local: str | Path,
        prefix: str,
        include: Callable[[Path], bool] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        local = Path(local)
        for path in _local_files(local):
            if cancel_event is not None and cancel_event.is_set():
                raise JobCancelledError(f"sync with {self} cancelled")
            if include is not None and not include(path):
                continue
            key = _join_key(prefix, path.relative_to(local).as_posix())
            target = self._path(key)
            if target.exists() and _md5(target) == _md5(path):
                continue
            self.upload(key, path)

    def upload(self, remote: str, local: str | Path) -> None:
        target = self._path(remote)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(local, target)
        logger.debug(f"Copied {local} to {target}")

    def remove_many(self, keys: list[str]) -> None:
        for key in keys:
            self._path(key).unlink(missing_ok=True)

    def dry_run_clone(self, shadow_dir: str | Path) -> "ShadowBucket":
        return ShadowBucket(LocalBucket(self.root), LocalBucket(shadow_dir))


class ShadowBucket(Bucket):
    """Reads from a source bucket and sends every write to a shadow bucket."""

    def __init__(self, source: Bucket, shadow: Bucket):
        self.source = source
        self.shadow = shadow
        self.name = source.name

    def __str__(self) -> str:
        return f"{self.source} (dry run, writes to {self.shadow})"

    def open(self) -> None:
        self.source.open()
        self.shadow.open()
        logger.info(f"Dry run: writes to {self.source} are redirected to {self.shadow}")

    def close(self) -> None:
        self.source.close()
        self.shadow.close()

    def list_keys(self, prefix: str = "") -> dict[str, str]:
        return self.source.list_keys(prefix)

    def sync_from(
        self,
        local: str | Path,
        prefix: str,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.source.sync_from(local, prefix, cancel_event=cancel_event)

    def sync_to(
        self,
        local: str | Path,
        prefix: str,
        include: Callable[[Path], bool] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.shadow.sync_to(local, prefix, include=include, cancel_event=cancel_event)

    def upload(self, remote: str, local: str | Path) -> None:
        self.shadow.upload(remote, local)

    def remove_many(self, keys: list[str]) -> None:
        logger.info(f"Dry run: would remove {len(keys)} objects from {self.source}")
        self.shadow.remove_many(keys)

    def dry_run_clone(self, shadow_dir: str | Path) -> "ShadowBucket":
        return ShadowBucket(self.source, LocalBucket(shadow_dir))
