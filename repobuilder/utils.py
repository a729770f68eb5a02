"""Utility functions shared by the repository builder components."""

import gzip
import logging
import subprocess
import threading
from pathlib import Path

from repobuilder.errors import ExternalToolError, JobCancelledError

logger = logging.getLogger(__name__)


def run_command(args: list[str], cwd: str | Path | None = None) -> str:
    """Run an external tool and return its standard output.

    Args:
        args: Command and arguments
        cwd: Working directory for the command

    Returns:
        Captured stdout as text

    Raises:
        ExternalToolError: If the tool cannot be started or exits non-zero
    """
    logger.debug(f"Running {' '.join(args)} in {cwd or '.'}")

    try:
        result = subprocess.run(
            args,
            cwd=str(cwd) if cwd is not None else None,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as e:
        raise ExternalToolError(
            args, None, message=f"could not run '{args[0]}': {e}"
        ) from e

    if result.returncode != 0:
        logger.warning(
            f"{args[0]} exited with status {result.returncode}: {result.stderr.strip()}"
        )
        raise ExternalToolError(args, result.returncode, result.stdout, result.stderr)

    return result.stdout


def gzip_and_write_file(file_path: str | Path, content: bytes) -> None:
    """Write content to file_path gzipped at best compression.

    mtime is pinned so identical content produces identical bytes.
    """
    with open(file_path, "wb") as raw:
        with gzip.GzipFile(
            filename="", mode="wb", fileobj=raw, compresslevel=9, mtime=0
        ) as gz:
            gz.write(content)


def raise_if_cancelled(cancel_event: threading.Event | None, where: str = "") -> None:
    """Raise JobCancelledError if the cancellation token has fired."""
    if cancel_event is not None and cancel_event.is_set():
        suffix = f" before {where}" if where else ""
        raise JobCancelledError(f"operation cancelled{suffix}")
