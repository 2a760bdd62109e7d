"""Version ordering and constraint matching for formula versions."""

from __future__ import annotations

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version


def parse_version(version: str) -> Version:
    """Parse a formula version token.

    Raises:
        ValueError: If the token is not an orderable version.
    """
    try:
        return Version(version)
    except InvalidVersion as e:
        raise ValueError(f"not a valid version: {version!r}") from e


def parse_constraint(constraint: str) -> SpecifierSet:
    """Parse a version constraint; the empty string matches any version.

    Raises:
        ValueError: If the constraint is malformed.
    """
    try:
        return SpecifierSet(constraint)
    except InvalidSpecifier as e:
        raise ValueError(f"not a valid constraint: {constraint!r}") from e


def satisfies(version: str, constraint: str) -> bool:
    """Whether `version` matches `constraint` (pre-releases included)."""
    if not constraint:
        return True
    return parse_constraint(constraint).contains(parse_version(version), prereleases=True)


def newest(versions: list[str]) -> str | None:
    """Highest version of `versions`, or None if empty."""
    if not versions:
        return None
    return max(versions, key=parse_version)
