"""Release identifier parsing.

Versions are semantic versions (``MAJOR.MINOR.PATCH[-tag][+build]``) with a
few extra conventions:

- a trailing ``-`` or a ``~tag`` marks a development (nightly) build
- ``-rcN`` marks a release candidate
- versions at or after 4.5.0-alpha0 follow the newer scheme, where
  ``-alphaN`` is a development release, minor 0 is the yearly LTS release and
  every other minor is a continuous release
"""

import re
from functools import total_ordering

_SEMVER_RE = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)

END_OF_LEGACY = "4.5.0-alpha0"
FIRST_LTS = "5.0.0"
DEV_RELEASE_TAG = "alpha"


def _parse_semver(version: str) -> tuple[int, int, int, tuple[str, ...]]:
    """Split a semantic version into numeric parts and prerelease identifiers.

    Raises:
        ValueError: If the string is not a semantic version
    """
    match = _SEMVER_RE.match(version)
    if match is None:
        raise ValueError(f"error parsing '{version}': not a semantic version")

    major, minor, patch, prerelease, _ = match.groups()
    pre = tuple(prerelease.split(".")) if prerelease else ()
    return int(major), int(minor), int(patch), pre


def _precedence(parts: tuple[int, int, int, tuple[str, ...]]) -> tuple:
    major, minor, patch, pre = parts
    if not pre:
        # releases sort after every prerelease of the same version
        return (major, minor, patch, 1, ())

    keyed = tuple(
        (0, int(ident), "") if ident.isdigit() else (1, 0, ident) for ident in pre
    )
    return (major, minor, patch, 0, keyed)


@total_ordering
class MongoDBVersion:
    """A parsed release identifier.

    All parsing happens during construction; use parse_version() rather than
    building instances directly.
    """

    def __init__(self, source: str):
        self.source = source
        self.is_dev = False
        self.is_rc = False
        self.rc_number = -1
        self.tag = ""
        self.is_new_scheme = False
        self.is_dev_release = False
        self.dev_release_number = -1

        version = source
        if version.endswith("-"):
            self.is_dev = True
            if "pre" not in version:
                version += "pre-"

        if "~" in version:
            head, *rest = version.split("~")
            version = head + "-pre-"
            self.tag = "".join(rest)
            self.is_dev = True

        self.parts = _parse_semver(version)

        if "rc" in version:
            self.is_rc = True

        tag_parts = version.split("-")
        if len(tag_parts) > 1:
            self.tag = "-".join(tag_parts[1:])
            if self.is_rc:
                # prerelease may carry a build suffix, like 1.0.0-rc0+buildinfo
                rc_part = tag_parts[1].split("+")[0]
                try:
                    self.rc_number = int(rc_part[2:])
                except ValueError as e:
                    raise ValueError(
                        f"couldn't parse release candidate number in '{source}'"
                    ) from e
                if len(tag_parts) > 2:
                    self.is_dev = True
            else:
                self.is_dev = True

        if _precedence(self.parts) >= _precedence(_parse_semver(END_OF_LEGACY)):
            self._apply_new_scheme()

    def _apply_new_scheme(self) -> None:
        self.is_new_scheme = True
        if DEV_RELEASE_TAG in self.tag:
            self.is_dev = False
            self.is_dev_release = True
            number = self.tag[len(DEV_RELEASE_TAG):]
            if number:
                try:
                    self.dev_release_number = int(number)
                except ValueError as e:
                    raise ValueError(
                        f"couldn't parse development release number in '{self.source}'"
                    ) from e

        if self.is_dev:
            raise ValueError(
                f"'{self.source}': development builds are not allowed in the new versioning scheme"
            )

    @property
    def major(self) -> int:
        return self.parts[0]

    @property
    def minor(self) -> int:
        return self.parts[1]

    @property
    def patch(self) -> int:
        return self.parts[2]

    @property
    def series(self) -> str:
        """First two components of the version, e.g. 3.2 for 3.2.6."""
        return f"{self.major}.{self.minor}"

    @property
    def is_release(self) -> bool:
        return not self.is_dev

    @property
    def is_development_build(self) -> bool:
        return self.is_dev

    @property
    def is_release_candidate(self) -> bool:
        return self.is_release and self.is_rc

    @property
    def is_stable_series(self) -> bool:
        """Legacy stable series have an even minor version."""
        if self.is_new_scheme:
            return False
        return self.minor % 2 == 0

    @property
    def is_development_series(self) -> bool:
        if self.is_new_scheme:
            return False
        return not self.is_stable_series

    @property
    def is_development_release(self) -> bool:
        if self.is_new_scheme:
            return self.is_dev_release
        return self.is_development_series and self.is_release

    @property
    def is_lts(self) -> bool:
        return self.is_new_scheme and self.is_release and self.minor == 0

    @property
    def is_continuous(self) -> bool:
        return self.is_new_scheme and self.is_release and self.minor != 0

    @property
    def lts(self) -> str:
        """Most recent LTS series, or an empty string when none precedes it."""
        if not self.is_new_scheme:
            return ""
        if _precedence(self.parts) < _precedence(_parse_semver(FIRST_LTS)):
            return ""
        return f"{self.major}.0"

    @property
    def stable_release_series(self) -> str:
        """Series of the next stable release for legacy versions.

        Equal to ``series`` for stable series; development series map to the
        following stable series. Not applicable to the new scheme.
        """
        if self.is_new_scheme:
            return ""
        if self.is_stable_series:
            return self.series
        if self.minor < 9:
            return f"{self.major}.{self.minor + 1}"
        return f"{self.major + 1}.0"

    def __str__(self) -> str:
        return self.source

    def __repr__(self) -> str:
        return f"MongoDBVersion({self.source!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MongoDBVersion):
            return NotImplemented
        return self.source == other.source

    def __hash__(self) -> int:
        return hash(self.source)

    def __lt__(self, other: "MongoDBVersion") -> bool:
        if not isinstance(other, MongoDBVersion):
            return NotImplemented
        # build metadata does not affect precedence; the source breaks ties
        return (_precedence(self.parts), self.source) < (_precedence(other.parts), other.source)


def parse_version(version: str) -> MongoDBVersion:
    """Parse a release identifier.

    Args:
        version: Version string (e.g., "4.4.0", "4.2.5-rc1", "5.0.5-alpha1")

    Returns:
        Parsed MongoDBVersion

    Raises:
        ValueError: If the string is not a valid release identifier

    Examples:
        >>> parse_version("4.4.0").series
        '4.4'
        >>> parse_version("4.2.5-rc1").is_release_candidate
        True
    """
    if not version or not isinstance(version, str):
        raise ValueError(f"version {version!r} is invalid")

    return MongoDBVersion(version)
