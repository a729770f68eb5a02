"""Repository build jobs.

A build job publishes a set of new packages into every mirror of one
repository definition. Each mirror is processed on its own thread:

    download mirror -> stage packages -> rebuild metadata (and sign)
        -> regenerate indexes -> upload

A failure on one mirror is recorded on the job and skips that mirror's
upload; sibling mirrors carry on. Jobs targeting the same (bucket, mirror)
are serialized through the catalog's scope locks.
"""

import logging
import shutil
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from repobuilder.backends.base import FormatBackend
from repobuilder.backends.deb import DebBackend
from repobuilder.backends.rpm import RpmBackend
from repobuilder.config import (
    ENV_AWS_PROFILE,
    ENV_NOTARY_KEY_NAME,
    ENV_NOTARY_TOKEN,
    get_env_var,
)
from repobuilder.config_manager import RepositoryConfig, RepositoryDefinition, RepoType
from repobuilder.errors import ExternalToolError, MirrorError, RepoBuilderError
from repobuilder.index_generator import IndexGenerator
from repobuilder.job_base import JobBase
from repobuilder.models import JobOptions, Phase
from repobuilder.package_fetcher import PackageFetcher
from repobuilder.s3_bucket import Bucket, S3Bucket
from repobuilder.signer import Signer
from repobuilder.stager import PackageStager
from repobuilder.utils import raise_if_cancelled

logger = logging.getLogger(__name__)

BACKENDS: dict[RepoType, type[FormatBackend]] = {
    RepoType.DEB: DebBackend,
    RepoType.RPM: RpmBackend,
}


def notary_credentials(options: JobOptions) -> tuple[str, str]:
    """Resolve the notary key name and token for a job.

    The key name comes from the options, then NOTARY_KEY_NAME, then the
    release: LTS and continuous releases sign with ``server-<series>``,
    everything else with the key of its stable release series.
    """
    key_name = options.notary_key or get_env_var(ENV_NOTARY_KEY_NAME)
    if not key_name and options.release is not None:
        release = options.release
        if release.is_lts or release.is_continuous:
            key_name = f"server-{release.series}"
        elif release.stable_release_series:
            key_name = f"server-{release.stable_release_series}"

    token = options.notary_token or get_env_var(ENV_NOTARY_TOKEN)
    return key_name, token


class BuildRepoJob(JobBase):
    """Publishes packages to every mirror of a repository definition.

    Attributes:
        options: Validated job options
        distro: Repository definition being published
        arch: Job architecture mapped onto the repository's naming
        bucket: Bucket driver; a shadow clone in dry-run mode
        working_dirs: Local directories created by run(), removed by cleanup()
    """

    def __init__(
        self,
        options: JobOptions,
        bucket: Bucket | None = None,
        signer: Signer | None = None,
    ):
        """Validate options and wire the job's collaborators.

        No I/O happens here; the bucket is opened by run().

        Args:
            options: Job options; validated and completed in place
            bucket: Bucket driver, defaults to S3 for the definition's bucket
            signer: Notary client, defaults to one built from the catalog

        Raises:
            ValidationError: If the options are invalid
        """
        options.validate()
        super().__init__(options.job_id)

        self.options = options
        self.conf: RepositoryConfig = options.configuration
        self.distro: RepositoryDefinition = options.distro
        self.release = options.release
        self.arch = self.distro.arch_for_distro(options.arch)
        self.dry_run = options.dry_run or self.conf.dry_run
        self.name = f"build-repo.distro.{self.distro.type.value}.repo.{self.id}"

        self.working_dirs: list[Path] = []
        self.tmp_dir: Path | None = None

        self._owns_signer = signer is None
        if signer is None:
            key_name, token = notary_credentials(options)
            signer = Signer(self.conf.services.notary_url, key_name, token)
        self.signer = signer

        if bucket is None:
            bucket = S3Bucket(
                self.distro.bucket,
                region=self.distro.region or self.conf.region,
                profile=options.aws_profile or get_env_var(ENV_AWS_PROFILE),
                aws_key=options.aws_key,
                aws_secret=options.aws_secret,
                aws_token=options.aws_token,
            )
        if self.dry_run:
            bucket = bucket.dry_run_clone(self.shadow_dir)
        self.bucket = bucket

        self.indexer = IndexGenerator(self.conf.index_template())

    @property
    def shadow_dir(self) -> Path:
        """Where bucket writes go in dry-run mode."""
        return Path(self.conf.workspace or ".") / "dry-run" / self.distro.bucket / self.id

    def _log_extra(self, **kwargs) -> dict:
        extra = {
            "job_id": self.id,
            "repo": self.distro.name,
            "edition": self.distro.edition,
            "version": self.options.version,
        }
        extra.update(kwargs)
        return extra

    def _register_working_dir(self, path: Path) -> None:
        with self._lock:
            self.working_dirs.append(path)

    def run(self, cancel_event: threading.Event | None = None) -> None:
        """Publish the packages to every mirror.

        Errors are recorded on the job rather than raised; the job is
        complete when run() returns.

        Args:
            cancel_event: Cancellation token; once set no new step begins
        """
        cancel_event = cancel_event or threading.Event()
        logger.info(f"Starting {self.name}", extra=self._log_extra(mirrors=self.distro.repos))

        try:
            self._run(cancel_event)
        finally:
            if self._owns_signer:
                self.signer.close()
            self.mark_complete()

        if self.has_errors():
            logger.error(
                f"{self.name} finished with {len(self.errors)} error(s)",
                extra=self._log_extra(),
            )
        else:
            logger.info(f"{self.name} finished successfully", extra=self._log_extra())

    def _run(self, cancel_event: threading.Event) -> None:
        try:
            packages = self._prepare(cancel_event)
        except (RepoBuilderError, OSError) as e:
            logger.error(f"Failed to prepare {self.name}: {e}", extra=self._log_extra())
            self.add_error(e)
            return

        try:
            with ThreadPoolExecutor(max_workers=max(1, len(self.distro.repos))) as executor:
                futures = [
                    executor.submit(self._build_mirror, mirror, packages, cancel_event)
                    for mirror in self.distro.repos
                ]
                for future in futures:
                    future.result()
        finally:
            self.bucket.close()

    def _prepare(self, cancel_event: threading.Event) -> list[str]:
        """Create the job directories, resolve the packages and open the bucket."""
        for root in (self.conf.workspace, self.conf.temp_space):
            if root:
                Path(root).mkdir(parents=True, exist_ok=True)
        self.tmp_dir = Path(tempfile.mkdtemp(prefix=f"{self.id}-", dir=self.conf.temp_space or None))

        fetcher = PackageFetcher(self.tmp_dir / "downloads")
        try:
            packages = fetcher.fetch(self.options.packages)
        finally:
            fetcher.close()

        raise_if_cancelled(cancel_event, "opening the bucket")
        self.bucket.open()
        return packages

    def _backend(self, packages: list[str], cancel_event: threading.Event) -> FormatBackend:
        backend_cls = BACKENDS[self.distro.type]
        return backend_cls(
            self.distro,
            self.conf,
            self.arch,
            stager=PackageStager(packages, backend_cls.suffix),
            signer=self.signer,
            indexer=self.indexer,
            record=self.record_output,
            dry_run=self.dry_run,
            cancel_event=cancel_event,
        )

    def _build_mirror(self, mirror: str, packages: list[str], cancel_event: threading.Event) -> None:
        extra = self._log_extra(mirror=mirror, bucket=self.distro.bucket)
        phase = Phase.SETUP

        try:
            with self.conf.scope_lock(self.distro.bucket, mirror):
                raise_if_cancelled(cancel_event, Phase.SETUP)
                working_dir = Path(
                    tempfile.mkdtemp(prefix=f"{self.id}-", dir=self.conf.workspace or None)
                )
                self._register_working_dir(working_dir)
                local = working_dir / mirror.strip("/")

                phase = Phase.DOWNLOAD
                logger.info(f"Downloading mirror {mirror} into {local}", extra=extra)
                self.bucket.sync_from(local, mirror, cancel_event=cancel_event)

                raise_if_cancelled(cancel_event, Phase.STAGE)
                phase = Phase.STAGE
                backend = self._backend(packages, cancel_event)
                repo_dir = backend.inject_packages(working_dir, mirror)

                raise_if_cancelled(cancel_event, Phase.REBUILD)
                phase = Phase.REBUILD
                backend.rebuild_metadata(repo_dir, mirror)

                raise_if_cancelled(cancel_event, Phase.INDEX)
                phase = Phase.INDEX
                self.indexer.build_indexes(local, self.distro.bucket)

                raise_if_cancelled(cancel_event, Phase.UPLOAD)
                phase = Phase.UPLOAD
                logger.info(f"Uploading mirror {mirror} to {self.bucket}", extra=extra)
                self.bucket.sync_to(local, mirror, cancel_event=cancel_event)

        except Exception as e:
            failed_phase = getattr(e, "phase", None) or phase
            output = e.output if isinstance(e, ExternalToolError) else ""
            logger.error(f"Mirror {mirror} failed during {failed_phase}: {e}", extra=extra)
            self.add_error(MirrorError(mirror, failed_phase, e, output))
            return

        logger.info(f"Published mirror {mirror}", extra=extra)

    def cleanup(self) -> None:
        """Remove the working directories and temporary files of the job."""
        with self._lock:
            paths = list(self.working_dirs)
            self.working_dirs.clear()
        if self.tmp_dir is not None:
            paths.append(self.tmp_dir)
            self.tmp_dir = None

        for path in paths:
            logger.debug(f"Removing {path}", extra=self._log_extra())
            shutil.rmtree(path, ignore_errors=True)


def new_repo_builder_job(
    options: JobOptions,
    bucket: Bucket | None = None,
    signer: Signer | None = None,
) -> BuildRepoJob:
    """Construct a build job from options.

    Raises:
        ValidationError: If the options are invalid
    """
    return BuildRepoJob(options, bucket=bucket, signer=signer)


def new_build_job(
    conf: RepositoryConfig,
    distro: RepositoryDefinition | None,
    version: str,
    arch: str,
    job_id: str,
    *packages: str,
    **kwargs,
) -> BuildRepoJob:
    """Construct a build job from positional inputs.

    Keyword arguments are passed to JobOptions, except ``bucket`` and
    ``signer`` which are handed to the job.

    Raises:
        ValidationError: If version is unparsable, distro is None, arch is
            empty or no packages are given
    """
    bucket = kwargs.pop("bucket", None)
    signer = kwargs.pop("signer", None)
    options = JobOptions(
        configuration=conf,
        distro=distro,
        version=version,
        arch=arch,
        packages=list(packages),
        job_id=job_id,
        **kwargs,
    )
    return new_repo_builder_job(options, bucket=bucket, signer=signer)
