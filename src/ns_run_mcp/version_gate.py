"""NativeScript CLI version gate.

Decides whether the installed CLI can be used for runs. The verdict is
computed once at startup from the raw ``tns --version`` output:

- no output (CLI missing) or no recognisable version -> "not installed"
- version outside [min_version, max_version]          -> "incompatible"
- anything else                                       -> compatible

Comparison follows semver precedence, so ``2.0.0-rc.1`` sorts below
``2.0.0``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import NamedTuple

from .errors import IncompatibleToolError

__all__ = [
    "SemVer",
    "VersionInfo",
    "evaluate",
    "parse_version",
    "NOT_INSTALLED_MESSAGE",
]

DEFAULT_MIN_CLI_VERSION = "2.0.0"
DEFAULT_MAX_CLI_VERSION = "2.5.99"

NOT_INSTALLED_MESSAGE = (
    "NativeScript CLI not found, please run 'npm install -g nativescript' "
    "to install it."
)

# First MAJOR.MINOR.PATCH[-pre][+build] occurrence in the CLI output.
# The CLI may print update banners around the version line.
_VERSION_RE = re.compile(
    r"v?(\d+)\.(\d+)\.(\d+)"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?"
)


class SemVer(NamedTuple):
    """Parsed semantic version (build metadata is dropped)."""

    major: int
    minor: int
    patch: int
    prerelease: tuple[str, ...] = ()

    def precedence_key(self) -> tuple:
        """Key implementing semver precedence rules."""
        if not self.prerelease:
            # A release outranks any of its pre-releases
            pre: tuple = ((1,),)
        else:
            pre = tuple(
                (0, 0, int(part), "") if part.isdigit() else (0, 1, 0, part)
                for part in self.prerelease
            )
            pre = ((0,),) + pre
        return (self.major, self.minor, self.patch) + pre

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += "-" + ".".join(self.prerelease)
        return text


def parse_version(text: str | None) -> SemVer | None:
    """Extract the first semantic version from ``text``.

    Returns:
        The parsed version, or None when nothing version-like is found.
    """
    if not text:
        return None
    match = _VERSION_RE.search(text)
    if match is None:
        return None
    major, minor, patch, pre = match.groups()
    prerelease = tuple(pre.split(".")) if pre else ()
    return SemVer(int(major), int(minor), int(patch), prerelease)


@dataclass(frozen=True)
class VersionInfo:
    """Outcome of the version gate.

    Attributes:
        version: Detected CLI version (None when not detected)
        is_compatible: Whether runs may use this CLI
        error_message: User-facing explanation when not compatible
    """

    version: SemVer | None
    is_compatible: bool
    error_message: str | None = None

    @property
    def display_version(self) -> str:
        return str(self.version) if self.version is not None else "not found"

    def to_error(self) -> IncompatibleToolError | None:
        """Build the matching error for a negative verdict."""
        if self.is_compatible:
            return None
        return IncompatibleToolError(
            self.error_message or NOT_INSTALLED_MESSAGE,
            not_installed=self.version is None,
        )


def incompatible_message(version: SemVer, min_version: SemVer, max_version: SemVer) -> str:
    return (
        f"The existing NativeScript extension is compatible with NativeScript CLI "
        f"v{min_version} - v{max_version}. Your CLI version is v{version}. "
        f"Please install a compatible version, "
        f"e.g. 'npm install -g nativescript@{max_version.major}.{max_version.minor}'."
    )


def evaluate(
    raw_version_output: str | None,
    min_version: str = DEFAULT_MIN_CLI_VERSION,
    max_version: str = DEFAULT_MAX_CLI_VERSION,
) -> VersionInfo:
    """Evaluate the CLI's reported version against the supported bounds.

    Args:
        raw_version_output: Raw ``--version`` output, None if the CLI is absent
        min_version: Lowest supported version (inclusive)
        max_version: Highest known-compatible version (inclusive)

    Returns:
        VersionInfo verdict

    Raises:
        ValueError: If one of the bounds is not a valid version
    """
    low = parse_version(min_version)
    high = parse_version(max_version)
    if low is None or high is None:
        raise ValueError(f"Invalid CLI version bounds: {min_version!r}..{max_version!r}")

    version = parse_version(raw_version_output.strip() if raw_version_output else None)
    if version is None:
        return VersionInfo(
            version=None,
            is_compatible=False,
            error_message=NOT_INSTALLED_MESSAGE,
        )

    key = version.precedence_key()
    if key < low.precedence_key() or key > high.precedence_key():
        return VersionInfo(
            version=version,
            is_compatible=False,
            error_message=incompatible_message(version, low, high),
        )

    return VersionInfo(version=version, is_compatible=True)
