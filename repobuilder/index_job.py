"""Job that regenerates the index pages of a bucket without touching packages."""

import logging
import shutil
import tempfile
import threading
from pathlib import Path

from repobuilder.config import ENV_AWS_PROFILE, get_env_var
from repobuilder.config_manager import RepositoryConfig
from repobuilder.errors import RepoBuilderError
from repobuilder.index_generator import INDEX_FILE, IndexGenerator
from repobuilder.job_base import JobBase
from repobuilder.models import Phase
from repobuilder.s3_bucket import Bucket, S3Bucket
from repobuilder.utils import raise_if_cancelled

logger = logging.getLogger(__name__)


def is_index_page(path: Path) -> bool:
    return path.name == INDEX_FILE


class IndexBuildJob(JobBase):
    """Downloads a bucket prefix, rebuilds every index.html and pushes them back.

    Only index pages are uploaded, so running the job never changes
    packages or repository metadata.
    """

    def __init__(
        self,
        conf: RepositoryConfig,
        bucket_name: str,
        workspace: str | Path = "",
        repo_name: str = "",
        dry_run: bool = False,
        prefix: str = "",
        bucket: Bucket | None = None,
        profile: str = "",
        job_id: str = "",
    ):
        super().__init__(job_id or f"build-index.{bucket_name}")
        self.conf = conf
        self.bucket_name = bucket_name
        self.workspace = Path(workspace or conf.workspace or ".")
        self.repo_name = repo_name or bucket_name
        self.prefix = prefix.strip("/")
        self.dry_run = dry_run or conf.dry_run
        self.working_dir: Path | None = None

        if bucket is None:
            bucket = S3Bucket(
                bucket_name,
                region=conf.region,
                profile=profile or get_env_var(ENV_AWS_PROFILE),
            )
        if self.dry_run:
            bucket = bucket.dry_run_clone(self.workspace / "dry-run" / bucket_name)
        self.bucket = bucket

        self.indexer = IndexGenerator(conf.index_template())

    def run(self, cancel_event: threading.Event | None = None) -> None:
        """Regenerate the indexes; errors are recorded on the job."""
        phase = Phase.SETUP
        extra = {"job_id": self.id, "bucket": self.bucket_name, "prefix": self.prefix}
        logger.info(f"Rebuilding index pages of {self.bucket_name}/{self.prefix}", extra=extra)

        try:
            self.workspace.mkdir(parents=True, exist_ok=True)
            self.working_dir = Path(tempfile.mkdtemp(prefix="index-", dir=self.workspace))

            with self.bucket:
                phase = Phase.DOWNLOAD
                self.bucket.sync_from(self.working_dir, self.prefix, cancel_event=cancel_event)

                raise_if_cancelled(cancel_event, Phase.INDEX)
                phase = Phase.INDEX
                written = self.indexer.build_indexes(self.working_dir, self.repo_name)

                raise_if_cancelled(cancel_event, Phase.UPLOAD)
                phase = Phase.UPLOAD
                self.bucket.sync_to(
                    self.working_dir,
                    self.prefix,
                    include=is_index_page,
                    cancel_event=cancel_event,
                )
                self.record_output(Phase.INDEX, self.prefix, str(self.working_dir), f"wrote {written} index pages")
        except (RepoBuilderError, OSError) as e:
            failed_phase = getattr(e, "phase", None) or phase
            logger.error(f"Index rebuild failed during {failed_phase}: {e}", extra=extra)
            self.add_error(e)
        finally:
            self.mark_complete()

    def cleanup(self) -> None:
        if self.working_dir is not None:
            shutil.rmtree(self.working_dir, ignore_errors=True)
            self.working_dir = None
