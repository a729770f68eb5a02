"""Repository catalog loading.

The catalog is a YAML document listing every repository we publish, the
templates used to render ``Release`` headers and index pages, and the
external services the build jobs talk to.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import jinja2
import yaml

from repobuilder.config import DEFAULT_REGION
from repobuilder.errors import ConfigurationError

logger = logging.getLogger(__name__)

# DEB uses Debian architecture names for what RPM calls x86_64/ppc64le.
DEB_ARCH_ALIASES = {"x86_64": "amd64", "ppc64le": "ppc64el"}


class RepoType(str, Enum):
    """Repository formats we know how to build."""

    DEB = "deb"
    RPM = "rpm"


@dataclass
class RepositoryDefinition:
    """A repository that we publish.

    Attributes:
        name: Distro short name (e.g., "debian10", "rhel8")
        type: Repository format
        edition: Product line label (e.g., "org", "enterprise")
        bucket: Target bucket name
        repos: Mirror prefixes within the bucket, in declared order
        code_name: DEB code name (e.g., "buster")
        architectures: DEB architectures published by the repository
        component: DEB component (e.g., "main", "multiverse")
        region: Bucket region, inherited from the catalog when unset
    """

    name: str
    type: RepoType
    edition: str
    bucket: str
    repos: list[str] = field(default_factory=list)
    code_name: str = ""
    architectures: list[str] = field(default_factory=list)
    component: str = ""
    region: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RepositoryDefinition":
        """Build a definition from one entry of the catalog's repos list.

        Raises:
            ConfigurationError: If the entry has an unknown type
            KeyError: If a required field is missing
        """
        try:
            repo_type = RepoType(data["type"])
        except ValueError as e:
            raise ConfigurationError(
                f"{data['type']} is not a valid repo type for {data.get('name')}"
            ) from e

        return cls(
            name=data["name"],
            type=repo_type,
            edition=data["edition"],
            bucket=data["bucket"],
            repos=list(data.get("repos") or []),
            code_name=data.get("code_name") or "",
            architectures=list(data.get("architectures") or []),
            component=data.get("component") or "",
            region=data.get("region") or "",
        )

    def arch_for_distro(self, arch: str) -> str:
        """Map a build architecture onto this repository's naming."""
        if self.type == RepoType.DEB:
            return DEB_ARCH_ALIASES.get(arch, arch)
        return arch

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "edition": self.edition,
            "bucket": self.bucket,
            "repos": list(self.repos),
            "code_name": self.code_name,
            "architectures": list(self.architectures),
            "component": self.component,
            "region": self.region,
        }


@dataclass
class Templates:
    """Jinja2 templates used while publishing.

    Attributes:
        index_page: HTML page rendered with Title, RepoName and Files
        deb: Edition -> Release header rendered with CodeName, Component
            and Architectures
    """

    index_page: str = ""
    deb: dict[str, str] = field(default_factory=dict)


@dataclass
class Services:
    notary_url: str = ""


class RepositoryConfig:
    """The parsed repository catalog.

    Definitions are looked up by (edition, name). The catalog also owns the
    process-wide registry of per-mirror locks, so that only one build job
    mutates a given (bucket, mirror) at a time.
    """

    def __init__(
        self,
        repos: list[RepositoryDefinition] | None = None,
        templates: Templates | None = None,
        services: Services | None = None,
        mirrors: dict[str, str] | None = None,
        dry_run: bool = False,
        verbose: bool = False,
        workspace: str = "",
        temp_space: str = "",
        region: str = DEFAULT_REGION,
        file_name: str = "",
    ) -> None:
        self.repos = list(repos or [])
        self.templates = templates or Templates()
        self.services = services or Services()
        self.mirrors = dict(mirrors or {})
        self.dry_run = dry_run
        self.verbose = verbose
        self.workspace = workspace
        self.temp_space = temp_space
        self.region = region or DEFAULT_REGION
        self.file_name = file_name

        self._lookup: dict[tuple[str, str], RepositoryDefinition] = {}
        self._scope_locks: dict[tuple[str, str], threading.Lock] = {}
        self._scope_locks_guard = threading.Lock()
        self._jinja = jinja2.Environment(keep_trailing_newline=True)
        self._html_jinja = jinja2.Environment(autoescape=True)

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> "RepositoryConfig":
        """Load and validate a catalog from a YAML file.

        Raises:
            FileNotFoundError: If the YAML file does not exist
            ConfigurationError: If the catalog is malformed
        """
        with open(yaml_path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"could not parse {yaml_path}: {e}") from e

        conf = cls.from_dict(data or {}, file_name=str(yaml_path))

        if not conf.services.notary_url:
            logger.warning(
                "no notary service url specified",
                extra={"file": str(yaml_path), "num_repos": len(conf.repos)},
            )

        return conf

    @classmethod
    def from_dict(cls, data: dict[str, Any], file_name: str = "") -> "RepositoryConfig":
        """Build a catalog from an already-parsed document.

        Raises:
            ConfigurationError: If the catalog is malformed
        """
        if not isinstance(data, dict):
            raise ConfigurationError(f"catalog {file_name or '<memory>'} is not a mapping")

        problems = []
        repos = []
        for idx, entry in enumerate(data.get("repos") or []):
            try:
                repos.append(RepositoryDefinition.from_dict(entry))
            except ConfigurationError as e:
                problems.append(str(e))
            except (KeyError, TypeError) as e:
                problems.append(f"repo #{idx} is missing required field {e}")

        templates_data = data.get("templates") or {}
        services_data = data.get("services") or {}

        conf = cls(
            repos=repos,
            templates=Templates(
                index_page=templates_data.get("index_page") or "",
                deb=dict(templates_data.get("deb") or {}),
            ),
            services=Services(notary_url=services_data.get("notary_url") or ""),
            mirrors=data.get("mirrors") or {},
            dry_run=bool(data.get("dry_run", False)),
            verbose=bool(data.get("verbose", False)),
            workspace=data.get("workspace") or "",
            temp_space=data.get("temp") or "",
            region=data.get("region") or DEFAULT_REGION,
            file_name=file_name,
        )

        problems.extend(conf._process_repos())
        problems.extend(conf._check_templates())

        if problems:
            raise ConfigurationError(
                f"invalid repository catalog {file_name or '<memory>'}", problems
            )

        return conf

    def _process_repos(self) -> list[str]:
        problems = []
        for idx, dfn in enumerate(self.repos):
            key = (dfn.edition, dfn.name)
            if key in self._lookup:
                problems.append(f"the {dfn.edition}.{dfn.name} already exists as repo #{idx}")
                continue

            if dfn.type == RepoType.DEB and not dfn.architectures:
                problems.append(f"debian distro {dfn.name} does not specify architecture list")
                continue

            if not dfn.region:
                dfn.region = self.region

            self._lookup[key] = dfn

        return problems

    def _check_templates(self) -> list[str]:
        problems = []
        if not self.templates.index_page:
            problems.append("no index page template defined")
        else:
            try:
                self._html_jinja.parse(self.templates.index_page)
            except jinja2.TemplateSyntaxError as e:
                problems.append(f"index page template is invalid: {e}")

        for edition, source in self.templates.deb.items():
            try:
                self._jinja.parse(source)
            except jinja2.TemplateSyntaxError as e:
                problems.append(f"'Release' template for {edition} is invalid: {e}")

        return problems

    def get_repository_definition(self, name: str, edition: str) -> RepositoryDefinition | None:
        """Return the definition for edition+name, or None if it does not exist."""
        return self._lookup.get((edition, name))

    def release_template(self, edition: str) -> jinja2.Template:
        """Return the compiled DEB Release header template for an edition.

        Raises:
            ConfigurationError: If no template is defined for the edition
        """
        source = self.templates.deb.get(edition)
        if source is None:
            raise ConfigurationError(f"no 'Release' template defined for {edition}")
        return self._jinja.from_string(source)

    def index_template(self) -> jinja2.Template:
        return self._html_jinja.from_string(self.templates.index_page)

    def scope_lock(self, bucket: str, mirror: str) -> threading.Lock:
        """Return the process-wide lock guarding one (bucket, mirror) pair."""
        key = (bucket, mirror.strip("/"))
        with self._scope_locks_guard:
            lock = self._scope_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._scope_locks[key] = lock
            return lock

    def to_dict(self) -> dict[str, Any]:
        """Serialize the catalog back into its document form."""
        return {
            "mirrors": dict(self.mirrors),
            "templates": {
                "index_page": self.templates.index_page,
                "deb": dict(self.templates.deb),
            },
            "repos": [dfn.to_dict() for dfn in self.repos],
            "services": {"notary_url": self.services.notary_url},
            "dry_run": self.dry_run,
            "verbose": self.verbose,
            "workspace": self.workspace,
            "temp": self.temp_space,
            "region": self.region,
        }


def get_config(file_name: str | Path) -> RepositoryConfig:
    """Load the repository catalog stored in file_name."""
    return RepositoryConfig.from_yaml(file_name)
