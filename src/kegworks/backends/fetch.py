"""Source fetcher for formulae whose sources live on the local filesystem."""

from __future__ import annotations

from pathlib import Path

from kegworks.core.errors import FetchError
from kegworks.core.logging import get_logger
from kegworks.core.models import Formula

log = get_logger(__name__)


class LocalSourceFetcher:
    """Resolve `formula.source` relative to the formula directory."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)

    async def fetch(self, formula: Formula) -> Path | None:
        if not formula.source:
            log.debug("fetch_no_source", package=formula.name)
            return None

        path = Path(formula.source).expanduser()
        if not path.is_absolute():
            path = self.base_dir / path

        if not path.exists():
            log.error("fetch_missing_source", package=formula.name, path=str(path))
            raise FetchError(formula=formula.name, path=str(path))

        log.info("fetch_complete", package=formula.name, path=str(path))
        return path
