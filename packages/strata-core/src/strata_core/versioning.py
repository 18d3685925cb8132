"""Semantic version parsing and precedence.

Both ``schema_version`` and ``content_version`` of a page definition are
semver 2.0 strings. Precedence follows semver: build metadata is ignored and
a pre-release sorts before the corresponding release.
"""

from __future__ import annotations

import re
from functools import total_ordering
from typing import NamedTuple

SEMVER_PATTERN = (
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)
SEMVER_RE = re.compile(SEMVER_PATTERN)


class _PrereleaseId(NamedTuple):
    numeric: bool
    value: str

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, _PrereleaseId):
            return NotImplemented
        if self.numeric and other.numeric:
            return int(self.value) < int(other.value)
        if self.numeric != other.numeric:
            # Numeric identifiers have lower precedence than alphanumeric ones
            return self.numeric
        return self.value < other.value


@total_ordering
class SemVer:
    """A parsed semantic version.

    Example:
        >>> SemVer.parse("1.2.0-rc.1") < SemVer.parse("1.2.0")
        True
    """

    __slots__ = ("major", "minor", "patch", "prerelease", "build")

    def __init__(
        self,
        major: int,
        minor: int,
        patch: int,
        prerelease: tuple[str, ...] = (),
        build: tuple[str, ...] = (),
    ) -> None:
        self.major = major
        self.minor = minor
        self.patch = patch
        self.prerelease = prerelease
        self.build = build

    @classmethod
    def parse(cls, value: str) -> SemVer:
        """Parse a semver string.

        Raises:
            ValueError: If ``value`` is not a valid semver 2.0 string.
        """
        match = SEMVER_RE.match(str(value).strip())
        if not match:
            raise ValueError(f"Invalid semantic version: {value!r}")
        major, minor, patch, pre, build = match.groups()
        return cls(
            int(major),
            int(minor),
            int(patch),
            tuple(pre.split(".")) if pre else (),
            tuple(build.split(".")) if build else (),
        )

    def _key(self) -> tuple[object, ...]:
        # A release (no prerelease) outranks any prerelease of the same core
        pre_key: tuple[object, ...]
        if self.prerelease:
            pre_key = (0, tuple(_PrereleaseId(p.isdigit(), p) for p in self.prerelease))
        else:
            pre_key = (1, ())
        return (self.major, self.minor, self.patch, pre_key)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(self.prerelease)
        if self.build:
            text += "+" + ".".join(self.build)
        return text

    def __repr__(self) -> str:
        return f"SemVer({str(self)!r})"


def is_valid_semver(value: str | None) -> bool:
    """Return True if ``value`` parses as semver 2.0."""
    if not value:
        return False
    return SEMVER_RE.match(str(value).strip()) is not None


def compare_versions(left: str, right: str) -> int:
    """Compare two semver strings.

    Returns:
        Negative if ``left < right``, zero if equal precedence, positive otherwise.

    Raises:
        ValueError: If either value is not valid semver.
    """
    a, b = SemVer.parse(left), SemVer.parse(right)
    if a < b:
        return -1
    if a > b:
        return 1
    return 0
