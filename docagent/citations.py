"""
DocAgent SDK - Source accumulation and citation numbering.

Search-like tools return batches of sources. Batches are concatenated in
call order for the lifetime of one assistant message, and a citation marker
``[k]`` in the message text refers to ``sources[k - 1]``.
"""

import logging
import re
from typing import Any, Iterable, Optional, Union

from .models import Source

logger = logging.getLogger("docagent.citations")

# [3] but not a markdown link such as [3](https://...)
CITATION_PATTERN = re.compile(r"\[(\d+)\](?!\()")


class SourceAccumulator:
    """Append-only list of sources for a single message."""

    def __init__(self, sources: Optional[list[Source]] = None):
        self._sources = sources if sources is not None else []
        self._finalized = False

    @property
    def sources(self) -> list[Source]:
        return self._sources

    @property
    def finalized(self) -> bool:
        return self._finalized

    def __len__(self) -> int:
        return len(self._sources)

    def append(self, sources: Iterable[Union[Source, dict[str, Any]]]) -> int:
        """Append a batch and return the 0-based index where it starts."""
        if self._finalized:
            raise RuntimeError("Cannot add sources to a finalized message")
        start = len(self._sources)
        for src in sources:
            self._sources.append(src if isinstance(src, Source) else Source.from_dict(src))
        logger.debug("Added %d sources at offset %d", len(self._sources) - start, start)
        return start

    def resolve(self, citation: int) -> Optional[Source]:
        """Return the source for marker ``[citation]``, or None if out of range."""
        if citation < 1 or citation > len(self._sources):
            return None
        return self._sources[citation - 1]

    def citations_in(self, text: str) -> list[int]:
        """Citation numbers referenced in ``text``, in order of first appearance."""
        seen: list[int] = []
        for match in CITATION_PATTERN.finditer(text):
            num = int(match.group(1))
            if num not in seen:
                seen.append(num)
        return seen

    def unresolved_citations(self, text: str) -> list[int]:
        return [n for n in self.citations_in(text) if self.resolve(n) is None]

    def finalize(self) -> list[Source]:
        self._finalized = True
        return self._sources


def extract_sources(result: Any) -> list[dict[str, Any]]:
    """Pull a ``sources`` batch out of a tool result, if it carries one."""
    if isinstance(result, dict):
        sources = result.get("sources")
        if isinstance(sources, list):
            return [s for s in sources if isinstance(s, dict)]
    return []
