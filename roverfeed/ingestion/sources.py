"""Registry of known upstream sources."""

from __future__ import annotations

from typing import Dict, List

from roverfeed.core.errors import UnknownSourceError
from .base import BaseSource
from .curiosity import CuriositySource
from .perseverance import PerseveranceSource

SOURCES: Dict[str, BaseSource] = {
    source.name: source for source in (CuriositySource(), PerseveranceSource())
}


def get_source(source_id: str) -> BaseSource:
    source = SOURCES.get(source_id.lower())
    if source is None:
        raise UnknownSourceError(f"Unknown source '{source_id}'. Known sources: {', '.join(sorted(SOURCES))}")
    return source


def source_names() -> List[str]:
    return sorted(SOURCES)
