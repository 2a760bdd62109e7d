"""Derive keg status flags for display."""

from __future__ import annotations

from kegworks.core.models import Formula, Keg, KegState, KegStatus
from kegworks.core.versions import parse_version


def derive_status(keg: Keg, latest: Formula | None = None) -> KegStatus:
    """Derive the KegStatus of `keg`, optionally against the newest formula."""
    status = KegStatus.NONE

    if keg.state is KegState.LINKED:
        status |= KegStatus.LINKED
    else:
        status |= KegStatus.NOT_LINKED
    if keg.state is KegState.STAGED:
        status |= KegStatus.STAGED
    if keg.keg_only:
        status |= KegStatus.KEG_ONLY
    if latest is not None and parse_version(latest.version) > parse_version(keg.version):
        status |= KegStatus.OUTDATED

    return status
