"""Logging setup and environment lookups for the repository builder."""

import logging
import os
import sys


def setup_logging(level: str | None = None) -> None:
    """Set up process-wide logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to the
            LOG_LEVEL environment variable, then INFO.
    """
    log_level = level or os.getenv(ENV_LOG_LEVEL, "INFO")

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Set boto3 logging to WARNING to reduce noise
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("s3transfer").setLevel(logging.WARNING)


def get_env_var(name: str, default: str | None = None, required: bool = False) -> str:
    """Get environment variable with optional default and validation.

    Args:
        name: Environment variable name
        default: Default value if not set
        required: Whether the variable is required

    Returns:
        Environment variable value

    Raises:
        ValueError: If required variable is not set
    """
    value = os.getenv(name, default)

    if required and not value:
        raise ValueError(f"Required environment variable {name} is not set")

    return value or ""


# Environment variable names
ENV_LOG_LEVEL = "LOG_LEVEL"
ENV_AWS_PROFILE = "AWS_PROFILE"
ENV_AWS_REGION = "AWS_REGION"
ENV_NOTARY_KEY_NAME = "NOTARY_KEY_NAME"
ENV_NOTARY_TOKEN = "NOTARY_TOKEN"
ENV_SERVICE_USERNAME = "REPOBUILDER_SERVICE_USERNAME"
ENV_SERVICE_PASSWORD = "REPOBUILDER_SERVICE_PASSWORD"
ENV_SERVICE_API_KEY = "REPOBUILDER_SERVICE_API_KEY"

DEFAULT_REGION = "us-east-1"
