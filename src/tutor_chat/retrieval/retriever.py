from __future__ import annotations

from typing import Protocol, runtime_checkable

from tutor_chat.models import RetrievalFilter, RetrievedChunk


@runtime_checkable
class Retriever(Protocol):
    async def retrieve(
        self,
        query: str,
        *,
        limit: int,
        score_threshold: float,
        filter: RetrievalFilter,
    ) -> list[RetrievedChunk]:
        """Return up to ``limit`` chunks scoring at least ``score_threshold``.

        Only chunks of ``filter.course_name`` whose item title is one of
        ``filter.item_titles`` qualify.
        """
        ...
