"""Stages new packages into a mirror working copy."""

import filecmp
import logging
import os
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


class PackageStager:
    """Links (or, across filesystems, copies) packages into a directory.

    Attributes:
        suffix: Only files with this suffix are staged (".deb" or ".rpm")
    """

    def __init__(self, packages: list[str], suffix: str):
        self.packages = [Path(p) for p in packages]
        self.suffix = suffix

    def stage(self, dest: str | Path) -> list[Path]:
        """Stage every matching package into dest.

        Staging is idempotent: a package already present with the same
        content is left alone.

        Args:
            dest: Target directory, created if missing

        Returns:
            Paths of the staged packages inside dest

        Raises:
            OSError: If a package cannot be linked or copied
        """
        dest = Path(dest)
        staged = []

        for pkg in self.packages:
            if pkg.suffix != self.suffix:
                # build outputs include Packages files and such next to
                # the packages; they are regenerated later.
                logger.debug(f"Skipping {pkg}: not a {self.suffix} package")
                continue

            if not dest.exists():
                logger.info(f"Creating directory: {dest}")
                dest.mkdir(parents=True, exist_ok=True)

            target = dest / pkg.name
            if target.exists():
                if os.path.samefile(pkg, target) or filecmp.cmp(pkg, target, shallow=False):
                    logger.debug(f"Package {target} is already staged")
                    staged.append(target)
                    continue
                logger.warning(f"Replacing {target} with differing content from {pkg}")
                target.unlink()

            self._link_or_copy(pkg, target)
            staged.append(target)

        return staged

    def _link_or_copy(self, source: Path, target: Path) -> None:
        try:
            os.link(source, target)
            logger.info(f"Linked package {source} to {target}")
        except OSError as e:
            logger.debug(f"Could not hardlink {source} ({e}), copying instead")
            shutil.copy2(source, target)
            logger.info(f"Copied package {source} to {target}")
