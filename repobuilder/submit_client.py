"""Client for submitting build jobs to a remote repobuilder service."""

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from repobuilder.errors import JobCancelledError, ServiceError
from repobuilder.models import JobOptions

logger = logging.getLogger(__name__)

API_KEY_HEADER = "Api-Key"
API_USER_HEADER = "Api-User"


@dataclass
class JobStatus:
    """Status of a submitted job as reported by the service."""

    id: str
    status: dict[str, Any] = field(default_factory=dict)
    timing: dict[str, Any] = field(default_factory=dict)
    queue_status: dict[str, Any] = field(default_factory=dict)
    has_errors: bool = False
    error: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobStatus":
        return cls(
            id=data.get("id", ""),
            status=data.get("status") or {},
            timing=data.get("timing") or {},
            queue_status=data.get("queue_status") or {},
            has_errors=bool(data.get("has_errors", False)),
            error=data.get("error") or "",
        )

    @property
    def completed(self) -> bool:
        return bool(self.status.get("completed"))

    @property
    def in_progress(self) -> bool:
        return bool(self.status.get("in_progress"))


class SubmitClient:
    """Submits job options to the service and tracks the resulting job."""

    def __init__(
        self,
        base_url: str,
        timeout: int = 60,
        max_retries: int = 3,
        poll_initial_delay: float = 15,
        poll_interval: float = 30,
        poll_jitter: float = 60,
    ):
        """Initialize the submit client.

        Args:
            base_url: Service URL; ``/rest/v1`` is appended when missing
            timeout: Request timeout in seconds
            max_retries: Maximum number of retry attempts
            poll_initial_delay: Seconds before the first status check
            poll_interval: Minimum seconds between later status checks
            poll_jitter: Upper bound of the random delay added to poll_interval

        Raises:
            ValueError: If base_url is not an http(s) URL
        """
        if not base_url.startswith("http"):
            raise ValueError(f"malformed service URL: {base_url!r}")

        base_url = base_url.rstrip("/")
        if not base_url.endswith("/rest/v1"):
            base_url += "/rest/v1"

        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.poll_initial_delay = poll_initial_delay
        self.poll_interval = poll_interval
        self.poll_jitter = poll_jitter
        self.username = ""
        self.api_key = ""
        self.session = self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry configuration."""
        session = requests.Session()

        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "POST"],
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        return session

    def close(self) -> None:
        self.session.close()

    def _url(self, path: str) -> str:
        if path.startswith(self.base_url):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        headers = {API_KEY_HEADER: self.api_key}
        if self.username:
            headers[API_USER_HEADER] = self.username
        return headers

    def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        url = self._url(path)
        logger.debug(f"{method} {url}")

        try:
            response = self.session.request(
                method, url, json=payload, headers=self._headers(), timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Request to {url} failed after {self.max_retries} retries: {e}")
            raise ServiceError(f"request to {url} failed: {e}") from e

        if response.status_code != 200:
            raise ServiceError(_error_message(response), response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise ServiceError(f"invalid JSON in response from {url}: {e}") from e

    def login(self, username: str, password: str) -> None:
        """Exchange a username and password for an API key.

        Raises:
            ServiceError: If the service rejects the credentials
        """
        data = self._request("POST", "admin/login", {"username": username, "password": password})
        if data.get("username") != username:
            raise ServiceError("service returned logically inconsistent credentials")

        self.username = data["username"]
        self.api_key = data.get("key", "")
        logger.info(f"Logged in to {self.base_url} as {username}")

    def set_credentials(self, username: str, api_key: str) -> None:
        self.username = username
        self.api_key = api_key

    def submit_job(self, options: JobOptions) -> str:
        """Submit a build job and return its id on the service."""
        data = self._request("POST", "repobuilder", options.to_dict())
        job_id = data.get("id", "")
        logger.info(f"Submitted job {job_id}", extra={"scopes": data.get("scopes", [])})
        return job_id

    def check_job_status(self, job_id: str) -> JobStatus:
        return JobStatus.from_dict(self._request("GET", f"repobuilder/check/{job_id}"))

    def wait_for_job(
        self,
        job_id: str,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> JobStatus:
        """Poll the service until the job completes.

        Args:
            job_id: Job id returned by submit_job
            timeout: Give up after this many seconds
            cancel_event: Stop polling once set

        Returns:
            Final status of a job that completed without errors

        Raises:
            ServiceError: If the job completed with errors or polling failed
            JobCancelledError: If the timeout expired or cancel_event fired
        """
        cancel_event = cancel_event or threading.Event()
        started = time.monotonic()
        delay = self.poll_initial_delay
        checks = 0

        while True:
            if timeout is not None:
                remaining = timeout - (time.monotonic() - started)
                if remaining <= 0:
                    raise JobCancelledError(f"timed out waiting for job {job_id}")
                delay = min(delay, remaining)

            if cancel_event.wait(delay):
                raise JobCancelledError(f"stopped waiting for job {job_id}")

            checks += 1
            status = self.check_job_status(job_id)
            extra = {
                "job": status.id,
                "wallclock_seconds": time.monotonic() - started,
                "checks": checks,
                "in_progress": status.in_progress,
                "complete": status.completed,
            }

            if not status.completed:
                logger.info(f"Job {job_id} is still running", extra=extra)
                delay = self.poll_interval + random.uniform(0, self.poll_jitter)
                continue

            if status.has_errors:
                logger.error(f"Job {job_id} failed", extra=extra)
                raise ServiceError(f"job '{job_id}' completed with error [{status.error}]")

            logger.info(f"Job {job_id} completed", extra=extra)
            return status


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason or "request failed"
    if isinstance(body, dict):
        return body.get("message") or body.get("error") or str(body)
    return str(body)
