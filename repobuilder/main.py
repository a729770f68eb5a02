"""Command line entry point for the repository builder."""

import argparse
import logging
import sys
import threading
from pathlib import Path

from repobuilder.config import (
    ENV_SERVICE_API_KEY,
    ENV_SERVICE_PASSWORD,
    ENV_SERVICE_USERNAME,
    get_env_var,
    setup_logging,
)
from repobuilder.config_manager import RepositoryConfig, RepositoryDefinition, RepoType, get_config
from repobuilder.errors import ConfigurationError, RepoBuilderError
from repobuilder.index_job import IndexBuildJob
from repobuilder.job import BuildRepoJob, new_repo_builder_job
from repobuilder.models import JobOptions
from repobuilder.submit_client import SubmitClient

logger = logging.getLogger(__name__)

SUFFIXES = {RepoType.DEB: ".deb", RepoType.RPM: ".rpm"}

# Deadlines, in seconds, applied when --timeout is not given.
REPO_JOB_TIMEOUT = 120 * 60
INDEX_JOB_TIMEOUT = 10 * 60


def find_packages(paths: list[str], suffix: str) -> list[str]:
    """Expand directories into the packages they contain.

    Files and URLs are kept as given; directories are searched recursively
    for files ending in suffix.
    """
    packages = []
    for entry in paths:
        path = Path(entry)
        if not entry.startswith("http") and path.is_dir():
            found = sorted(str(p) for p in path.rglob(f"*{suffix}") if p.is_file())
            logger.info(f"Found {len(found)} {suffix} packages in {path}")
            packages.extend(found)
        else:
            packages.append(entry)
    return packages


def normalize_edition(edition: str) -> str:
    return "org" if edition == "community" else edition


def _add_selection_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", required=True, help="path to the repository catalog")
    parser.add_argument("--distro", required=True, help="repository name, e.g. debian10")
    parser.add_argument("--edition", default="org", help="edition, e.g. org or enterprise")
    parser.add_argument("--version", required=True, help="release version of the packages")
    parser.add_argument("--arch", required=True, help="architecture of the packages")
    parser.add_argument(
        "--packages", nargs="+", required=True, help="package files, directories or URLs"
    )
    parser.add_argument("--notary-key", default="", help="notary key name")
    parser.add_argument("--notary-token", default="", help="notary auth token")
    parser.add_argument("--timeout", type=float, default=None, help="give up after N seconds")
    parser.add_argument("--verbose", action="store_true", help="enable debug logging")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repobuilder",
        description="Build and publish DEB and RPM repositories to S3",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    repo = subparsers.add_parser("repo", help="publish packages to a repository")
    _add_selection_args(repo)
    repo.add_argument("--dry-run", action="store_true", help="write to a local shadow bucket")
    repo.add_argument("--profile", default="", help="AWS credentials profile")
    repo.add_argument("--aws-key", default="", help="AWS access key id")
    repo.add_argument("--aws-secret", default="", help="AWS secret access key")
    repo.add_argument("--aws-token", default="", help="AWS session token")
    repo.add_argument("--job-id", default="", help="job id, generated when omitted")
    repo.add_argument("--dir", default="", help="workspace for mirror working copies")
    repo.set_defaults(func=run_repo)

    submit = subparsers.add_parser("submit", help="submit a repo job to a remote service")
    _add_selection_args(submit)
    submit.add_argument("--service", required=True, help="URL of the repobuilder service")
    submit.add_argument("--username", default=None, help="service user name")
    submit.add_argument("--password", default=None, help="service password")
    submit.add_argument("--api-key", default=None, help="service API key")
    submit.set_defaults(func=run_submit)

    index = subparsers.add_parser("index", help="rebuild the index pages of a bucket")
    index.add_argument("--config", required=True, help="path to the repository catalog")
    index.add_argument("--bucket", required=True, help="bucket to rebuild")
    index.add_argument("--prefix", default="", help="only rebuild pages under this prefix")
    index.add_argument("--repo-name", default="", help="name shown on the pages")
    index.add_argument("--dir", default="", help="local workspace")
    index.add_argument("--dry-run", action="store_true", help="write to a local shadow bucket")
    index.add_argument("--profile", default="", help="AWS credentials profile")
    index.add_argument("--timeout", type=float, default=None, help="give up after N seconds")
    index.add_argument("--verbose", action="store_true", help="enable debug logging")
    index.set_defaults(func=run_index)

    return parser


def _load_definition(args: argparse.Namespace) -> tuple[RepositoryConfig, RepositoryDefinition]:
    conf = get_config(args.config)
    edition = normalize_edition(args.edition)
    definition = conf.get_repository_definition(args.distro, edition)
    if definition is None:
        raise ConfigurationError(f"repo not defined for distro={args.distro}, edition={edition}")
    return conf, definition


def _start_timer(timeout: float | None, cancel_event: threading.Event) -> threading.Timer | None:
    if not timeout:
        return None
    timer = threading.Timer(timeout, cancel_event.set)
    timer.daemon = True
    timer.start()
    return timer


def run_repo(args: argparse.Namespace) -> int:
    conf, definition = _load_definition(args)
    if args.dir:
        conf.workspace = args.dir

    options = JobOptions(
        configuration=conf,
        distro=definition,
        version=args.version,
        arch=args.arch,
        packages=find_packages(args.packages, SUFFIXES[definition.type]),
        job_id=args.job_id,
        aws_profile=args.profile,
        aws_key=args.aws_key,
        aws_secret=args.aws_secret,
        aws_token=args.aws_token,
        notary_key=args.notary_key,
        notary_token=args.notary_token,
        dry_run=args.dry_run,
    )
    job: BuildRepoJob = new_repo_builder_job(options)

    cancel_event = threading.Event()
    timer = _start_timer(args.timeout or REPO_JOB_TIMEOUT, cancel_event)
    try:
        job.run(cancel_event)
    finally:
        if timer is not None:
            timer.cancel()

    err = job.error()
    job.cleanup()
    if err is not None:
        print(f"job {job.id} failed:\n{err}", file=sys.stderr)
        return 1

    logger.info(f"Published {definition.edition}.{definition.name} {args.version}")
    return 0


def run_submit(args: argparse.Namespace) -> int:
    conf, definition = _load_definition(args)

    options = JobOptions(
        configuration=conf,
        distro=definition,
        version=args.version,
        arch=args.arch,
        packages=find_packages(args.packages, SUFFIXES[definition.type]),
        notary_key=args.notary_key,
        notary_token=args.notary_token,
    )
    options.validate()

    username = args.username or get_env_var(ENV_SERVICE_USERNAME)
    password = args.password or get_env_var(ENV_SERVICE_PASSWORD)
    api_key = args.api_key or get_env_var(ENV_SERVICE_API_KEY)

    client = SubmitClient(args.service)
    try:
        if username and api_key:
            client.set_credentials(username, api_key)
        else:
            client.login(username, password)

        job_id = client.submit_job(options)
        client.wait_for_job(job_id, timeout=args.timeout)
    finally:
        client.close()

    logger.info(f"Remote job {job_id} completed")
    return 0


def run_index(args: argparse.Namespace) -> int:
    conf = get_config(args.config)
    job = IndexBuildJob(
        conf,
        args.bucket,
        workspace=args.dir,
        repo_name=args.repo_name,
        dry_run=args.dry_run,
        prefix=args.prefix,
        profile=args.profile,
    )

    cancel_event = threading.Event()
    timer = _start_timer(args.timeout or INDEX_JOB_TIMEOUT, cancel_event)
    try:
        job.run(cancel_event)
    finally:
        if timer is not None:
            timer.cancel()

    err = job.error()
    job.cleanup()
    if err is not None:
        print(f"index rebuild of {args.bucket} failed:\n{err}", file=sys.stderr)
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, run the selected command and return the exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging("DEBUG" if args.verbose else None)

    try:
        return args.func(args)
    except (RepoBuilderError, OSError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
