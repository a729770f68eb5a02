"""Exception types raised while loading catalogs and building repositories."""


class RepoBuilderError(Exception):
    """Base class for all repository builder errors.

    Attributes:
        phase: Build phase an error is attributed to when it escapes a
            mirror thread, or None when the caller should decide.
    """

    phase: str | None = None


class ConfigurationError(RepoBuilderError):
    """Raised when the repository catalog is malformed."""

    def __init__(self, message: str, problems: list[str] | None = None):
        self.problems = list(problems or [])
        if self.problems:
            message = f"{message}: " + "; ".join(self.problems)
        super().__init__(message)


class ValidationError(RepoBuilderError):
    """Raised when build job options are not logically valid."""

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__("invalid job options: " + "; ".join(self.problems))


class BucketError(RepoBuilderError):
    """Raised when an object storage operation fails after all retries."""

    def __init__(self, bucket: str, operation: str, message: str):
        self.bucket = bucket
        self.operation = operation
        super().__init__(f"{operation} on bucket '{bucket}' failed: {message}")


class PackageDownloadError(RepoBuilderError):
    """Raised when a remote package cannot be downloaded or unpacked."""

    phase = "download"

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"could not fetch package {source}: {message}")


class ExternalToolError(RepoBuilderError):
    """Raised when an external command exits with a non-zero status."""

    phase = "rebuild"

    def __init__(
        self,
        command: list[str],
        returncode: int | None,
        stdout: str = "",
        stderr: str = "",
        message: str | None = None,
    ):
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(
            message
            or f"command '{' '.join(self.command)}' exited with status {returncode}"
        )

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class SigningError(RepoBuilderError):
    """Raised when the notary service does not return a signature."""

    phase = "sign"


class IndexGenerationError(RepoBuilderError):
    """Raised when one or more index pages could not be written."""

    phase = "index"

    def __init__(self, root: str, failures: list[str]):
        self.root = root
        self.failures = list(failures)
        super().__init__(
            f"failed to build {len(self.failures)} index page(s) under {root}: "
            + "; ".join(self.failures)
        )


class JobCancelledError(RepoBuilderError):
    """Raised at a suspension point after the cancellation token fired."""


class MirrorError(RepoBuilderError):
    """Error recorded on a job for a single mirror.

    Attributes:
        mirror: Mirror prefix within the bucket
        phase: Phase that failed (download, stage, rebuild, sign, index, upload)
        cause: Underlying exception
        output: Captured external tool output, if any
    """

    def __init__(self, mirror: str, phase: str, cause: BaseException, output: str = ""):
        self.mirror = mirror
        self.phase = phase
        self.cause = cause
        self.output = output
        message = f"mirror '{mirror}' failed during {phase}: {cause}"
        if output:
            message += f"\n{output}"
        super().__init__(message)


class JobError(RepoBuilderError):
    """Composition of every error recorded on a job."""

    def __init__(self, job_id: str, errors: list[BaseException]):
        self.job_id = job_id
        self.errors = list(errors)
        super().__init__("\n".join(str(err) for err in self.errors))


class ServiceError(RepoBuilderError):
    """Raised when the remote build service rejects a request."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        if status_code is not None:
            message = f"{message} (HTTP {status_code})"
        super().__init__(message)
