"""Data models for repository build jobs."""

import uuid
from dataclasses import dataclass, field
from typing import Any

from repobuilder.config_manager import RepositoryConfig, RepositoryDefinition
from repobuilder.errors import ValidationError
from repobuilder.versions import MongoDBVersion, parse_version


class Phase:
    """Names of the per-mirror build phases."""

    SETUP = "setup"
    DOWNLOAD = "download"
    STAGE = "stage"
    REBUILD = "rebuild"
    SIGN = "sign"
    INDEX = "index"
    UPLOAD = "upload"


@dataclass
class JobOptions:
    """Options used to construct a repository build job.

    Attributes:
        configuration: The repository catalog
        distro: Definition of the repository to publish
        version: Release identifier of the packages
        arch: Target architecture of the packages
        packages: Local paths (or http URLs) of the new packages
        job_id: Unique job identifier, generated when empty
        aws_profile: Shared credentials profile for the bucket driver
        aws_key: Explicit access key for the bucket driver
        aws_secret: Explicit secret key for the bucket driver
        aws_token: Explicit session token for the bucket driver
        notary_key: Notary key name
        notary_token: Notary auth token
        dry_run: Send bucket writes to a shadow location
    """

    configuration: RepositoryConfig | None
    distro: RepositoryDefinition | None
    version: str
    arch: str
    packages: list[str] = field(default_factory=list)
    job_id: str = ""

    aws_profile: str = ""
    aws_key: str = ""
    aws_secret: str = ""
    aws_token: str = ""

    notary_key: str = ""
    notary_token: str = ""

    dry_run: bool = False

    release: MongoDBVersion | None = field(default=None, repr=False)

    def validate(self) -> None:
        """Check the options and retain the parsed release.

        Raises:
            ValidationError: Listing every problem found
        """
        problems = []
        if self.configuration is None:
            problems.append("configuration must not be nil")
        if self.distro is None:
            problems.append("distro definition must not be nil")
        if not self.arch:
            problems.append("arch must be specified")
        if not self.packages:
            problems.append("must specify at least one package")

        try:
            self.release = parse_version(self.version)
        except ValueError as e:
            problems.append(str(e))

        if not self.job_id:
            self.job_id = str(uuid.uuid4())

        if problems:
            raise ValidationError(problems)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the options for submission to a remote build service."""
        return {
            "conf": self.configuration.to_dict() if self.configuration else None,
            "distro": self.distro.to_dict() if self.distro else None,
            "version": self.version,
            "arch": self.arch,
            "packages": list(self.packages),
            "job_id": self.job_id,
            "aws_profile": self.aws_profile,
            "aws_key": self.aws_key,
            "aws_secret": self.aws_secret,
            "aws_token": self.aws_token,
            "notary_key": self.notary_key,
            "notary_token": self.notary_token,
            "dry_run": self.dry_run,
        }


@dataclass(frozen=True)
class OutputRecord:
    """One entry of a job's output log.

    Attributes:
        phase: Phase that produced the output
        mirror: Mirror prefix the output belongs to
        target: File or directory the operation acted on
        stdout: Captured tool output
        error: Error message when the operation failed
    """

    phase: str
    mirror: str
    target: str
    stdout: str
    error: str | None = None
