"""RHEL/CentOS/Amazon Linux repository backend."""

import logging
import threading
from pathlib import Path

from repobuilder.backends.base import FormatBackend
from repobuilder.models import Phase

logger = logging.getLogger(__name__)

# createrepo races on its shared on-disk caches; every RPM rebuild in the
# process goes through this lock.
CREATEREPO_LOCK = threading.Lock()

REPOMD_FILE = Path("repodata") / "repomd.xml"
REPOMD_SIGNATURE_EXTENSION = "asc"


class RpmBackend(FormatBackend):
    """Publishes packages into a yum repository for one architecture."""

    suffix = ".rpm"

    def inject_packages(self, working_dir: Path, mirror: str) -> Path:
        base = Path(working_dir) / mirror.strip("/") / self.arch
        rpms = base / "RPMS"

        staged = self.stager.stage(rpms)
        self.record(Phase.STAGE, mirror, str(rpms), "\n".join(str(p) for p in staged), None)
        return base

    def rebuild_metadata(self, repo_dir: Path, mirror: str = "") -> None:
        repo_dir = Path(repo_dir)
        repomd = repo_dir / REPOMD_FILE
        args = ["createrepo", "-d", "-s", "sha", str(repo_dir)]

        self.check_cancelled(Phase.REBUILD)
        with CREATEREPO_LOCK:
            if self.dry_run:
                logger.info(f"dry run: would run {' '.join(args)}")
                self.record(Phase.REBUILD, mirror, str(repo_dir), "dry run: createrepo skipped", None)
            else:
                repomd.with_name(f"{repomd.name}.{REPOMD_SIGNATURE_EXTENSION}").unlink(missing_ok=True)
                self.run_tool(args, repo_dir, mirror)

        if self.dry_run:
            logger.info(f"dry run: not signing {repomd}")
        else:
            self.sign(repomd, REPOMD_SIGNATURE_EXTENSION, mirror)

        self.build_indexes(repo_dir)
