"""Generator for Apache-style directory listing pages."""

import logging
import os
from pathlib import Path

import jinja2

from repobuilder.errors import IndexGenerationError

INDEX_FILE = "index.html"


class IndexGenerator:
    """Writes an index.html listing into every directory of a tree."""

    def __init__(self, template: jinja2.Template, logger: logging.Logger | None = None):
        """Initialize the index generator.

        Args:
            template: Page template rendered with Title, RepoName and Files
            logger: Optional logger instance for operation logging
        """
        self.template = template
        self.logger = logger or logging.getLogger(__name__)

    def build_indexes(self, root: str | Path, repo_name: str) -> int:
        """Render index.html for root and every directory below it.

        A failure on one directory does not stop the walk; all failures are
        reported together once the walk finishes.

        Args:
            root: Top of the tree
            repo_name: Repository name shown on every page

        Returns:
            Number of pages written

        Raises:
            IndexGenerationError: If any page could not be written
        """
        root = Path(root)
        failures = []
        written = 0

        def on_error(err: OSError) -> None:
            failures.append(f"{err.filename}: {err.strerror or err}")

        for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
            dirnames.sort()
            try:
                self.build_page(Path(dirpath), repo_name, sorted(dirnames + filenames))
                written += 1
            except (OSError, jinja2.TemplateError) as e:
                failures.append(f"{dirpath}: {e}")

        self.logger.info(
            f"Wrote {written} index pages under {root}",
            extra={"root": str(root), "repo": repo_name, "failures": len(failures)},
        )

        if failures:
            raise IndexGenerationError(str(root), failures)

        return written

    def build_page(self, directory: Path, repo_name: str, entries: list[str]) -> Path:
        """Render the listing page for a single directory.

        Args:
            directory: Directory to describe
            repo_name: Repository name shown on the page
            entries: Names of the directory's immediate children

        Returns:
            Path of the written page
        """
        files = [name for name in entries if name != INDEX_FILE]
        content = self.template.render(
            Title=f"Index of {directory.name}",
            RepoName=repo_name,
            Files=files,
        )

        page = directory / INDEX_FILE
        page.write_text(content)
        self.logger.debug(f"Wrote index file {page}", extra={"repo": repo_name})
        return page
