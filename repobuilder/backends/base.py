"""Abstract base class for repository format backends."""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path

from repobuilder import utils
from repobuilder.config_manager import RepositoryConfig, RepositoryDefinition
from repobuilder.errors import ExternalToolError
from repobuilder.index_generator import IndexGenerator
from repobuilder.models import Phase
from repobuilder.signer import Signer
from repobuilder.stager import PackageStager

logger = logging.getLogger(__name__)

OutputRecorder = Callable[[str, str, str, str, str | None], None]


class FormatBackend(ABC):
    """Base class for repository format backends.

    Each repository format (DEB, RPM) implements this interface to define
    where new packages land inside a mirror working copy and how the
    repository metadata is regenerated, signed and indexed.

    Attributes:
        definition: Repository being published
        conf: Repository catalog
        arch: Architecture of the packages in this job
    """

    suffix = ""

    def __init__(
        self,
        definition: RepositoryDefinition,
        conf: RepositoryConfig,
        arch: str,
        stager: PackageStager,
        signer: Signer,
        indexer: IndexGenerator,
        record: OutputRecorder | None = None,
        dry_run: bool = False,
        cancel_event: threading.Event | None = None,
    ) -> None:
        """Initialize backend with its collaborators.

        Args:
            definition: Repository definition
            conf: Repository catalog providing templates
            arch: Architecture directory to stage packages into
            stager: Links packages into the working copy
            signer: Notary client for metadata signatures
            indexer: Writes index.html pages
            record: Callback receiving (phase, mirror, target, stdout, error)
            dry_run: Skip operations that only make sense when publishing
            cancel_event: Cancellation token checked between steps
        """
        self.definition = definition
        self.conf = conf
        self.arch = arch
        self.stager = stager
        self.signer = signer
        self.indexer = indexer
        self.record = record or (lambda *args: None)
        self.dry_run = dry_run
        self.cancel_event = cancel_event

    @abstractmethod
    def inject_packages(self, working_dir: Path, mirror: str) -> Path:
        """Stage the job's packages into a mirror working copy.

        Args:
            working_dir: Local root of the mirror working copy
            mirror: Mirror prefix within the bucket

        Returns:
            Directory whose metadata must be rebuilt
        """

    @abstractmethod
    def rebuild_metadata(self, repo_dir: Path, mirror: str = "") -> None:
        """Regenerate, sign and index the metadata of repo_dir.

        Args:
            repo_dir: Directory returned by inject_packages
            mirror: Mirror prefix, used to attribute output
        """

    def check_cancelled(self, where: str) -> None:
        utils.raise_if_cancelled(self.cancel_event, where)

    def run_tool(self, args: list[str], cwd: Path, mirror: str) -> str:
        """Run an external tool, recording its output on the job."""
        logger.debug(f"Running {' '.join(args)} in {cwd}")
        try:
            output = utils.run_command(args, cwd=cwd)
        except ExternalToolError as e:
            self.record(Phase.REBUILD, mirror, str(cwd), e.output, str(e))
            raise

        self.record(Phase.REBUILD, mirror, str(cwd), output, None)
        return output

    def sign(self, path: Path, extension: str, mirror: str) -> None:
        """Sign a metadata file without overwriting an existing signature."""
        self.check_cancelled(Phase.SIGN)
        signature = self.signer.sign(path, extension, overwrite=False)
        self.record(Phase.SIGN, mirror, str(path), f"wrote {signature}", None)

    def build_indexes(self, directory: Path) -> None:
        self.check_cancelled(Phase.INDEX)
        self.indexer.build_indexes(directory, self.definition.bucket)
