"""Debian/Ubuntu repository backend."""

import logging
from datetime import UTC, datetime
from pathlib import Path

from repobuilder.backends.base import FormatBackend
from repobuilder.models import Phase
from repobuilder.utils import gzip_and_write_file

logger = logging.getLogger(__name__)

PACKAGES_FILE = "Packages"
RELEASE_FILE = "Release"
RELEASE_SIGNATURE_EXTENSION = "gpg"


class DebBackend(FormatBackend):
    """Publishes packages into an apt repository component.

    The component directory holds one ``binary-<arch>`` directory per
    architecture the repository publishes, and the ``Release`` file that
    covers all of them.
    """

    suffix = ".deb"

    def component_dir(self, working_dir: Path, mirror: str) -> Path:
        return Path(working_dir) / mirror.strip("/") / self.definition.component

    def arch_dir(self, component_dir: Path, arch: str | None = None) -> Path:
        return component_dir / f"binary-{arch or self.arch}"

    def architectures(self) -> list[str]:
        """Configured architectures plus the job's own, in declared order."""
        architectures = list(self.definition.architectures)
        if self.arch not in architectures:
            architectures.append(self.arch)
        return architectures

    def inject_packages(self, working_dir: Path, mirror: str) -> Path:
        base = self.component_dir(working_dir, mirror)

        for arch in self.architectures():
            self._seed_arch_dir(self.arch_dir(base, arch))

        staged = self.stager.stage(self.arch_dir(base))
        self.record(
            Phase.STAGE,
            mirror,
            str(self.arch_dir(base)),
            "\n".join(str(p) for p in staged),
            None,
        )
        return base

    def _seed_arch_dir(self, arch_dir: Path) -> None:
        arch_dir.mkdir(parents=True, exist_ok=True)

        packages = arch_dir / PACKAGES_FILE
        if not packages.exists():
            logger.info(f"Seeding empty {packages}")
            packages.write_bytes(b"")

        packages_gz = arch_dir / f"{PACKAGES_FILE}.gz"
        if not packages_gz.exists():
            gzip_and_write_file(packages_gz, b"")

    def rebuild_metadata(self, repo_dir: Path, mirror: str = "") -> None:
        """Regenerate Packages, Release and Release.gpg for a component.

        Args:
            repo_dir: The component directory (``<mirror>/<component>``)
            mirror: Mirror prefix, used to attribute output

        Raises:
            ConfigurationError: If the edition has no Release template
            ExternalToolError: If dpkg-scanpackages or apt-ftparchive fail
            SigningError: If the notary does not sign the Release file
            IndexGenerationError: If index pages cannot be written
        """
        repo_dir = Path(repo_dir)
        arch_dir = self.arch_dir(repo_dir)
        template = self.conf.release_template(self.definition.edition)

        self.check_cancelled(Phase.REBUILD)
        packages = self.run_tool(
            ["dpkg-scanpackages", "--multiversion", arch_dir.name], repo_dir, mirror
        )
        (arch_dir / PACKAGES_FILE).write_text(packages)
        gzip_and_write_file(arch_dir / f"{PACKAGES_FILE}.gz", packages.encode())
        logger.info(
            f"Wrote {arch_dir / PACKAGES_FILE}",
            extra={"repo": self.definition.name, "mirror": mirror, "arch": self.arch},
        )

        header = template.render(
            CodeName=self.definition.code_name,
            Component=self.definition.component,
            Architectures=" ".join(self.architectures()),
            Name=self.definition.name,
            Date=datetime.now(UTC).strftime("%a, %d %b %Y %H:%M:%S UTC"),
        )
        if header and not header.endswith("\n"):
            header += "\n"

        release = repo_dir / RELEASE_FILE
        for stale in (release, release.with_name(f"{RELEASE_FILE}.{RELEASE_SIGNATURE_EXTENSION}")):
            stale.unlink(missing_ok=True)

        hashes = self.run_tool(["apt-ftparchive", "release", "../"], arch_dir, mirror)
        release.write_text(header + hashes)
        logger.info(f"Wrote {release}", extra={"repo": self.definition.name, "mirror": mirror})

        self.sign(release, RELEASE_SIGNATURE_EXTENSION, mirror)
        self.build_indexes(repo_dir)
