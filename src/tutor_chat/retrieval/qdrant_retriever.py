from __future__ import annotations

from typing import Protocol

import openai
from loguru import logger
from qdrant_client import AsyncQdrantClient
from qdrant_client.models import FieldCondition, Filter, MatchAny, MatchValue
from tenacity import retry

from tutor_chat.models import RetrievalFilter, RetrievedChunk
from tutor_chat.providers.common import default_retry_kwargs

COURSE_NAME_KEY = "courseName"
ITEM_TITLE_KEY = "itemTitle"
_CONTENT_KEYS = ("text", "content")


class Embedder(Protocol):
    async def embed_query(self, text: str) -> list[float]: ...


class OpenAIEmbedder:
    def __init__(self, api_key: str, model: str = "text-embedding-3-small", *, base_url: str | None = None):
        self._client = openai.AsyncOpenAI(api_key=api_key, base_url=base_url)
        self._model = model

    @retry(**default_retry_kwargs((
        openai.RateLimitError,
        openai.APIConnectionError,
        openai.APITimeoutError,
    )))
    async def embed_query(self, text: str) -> list[float]:
        response = await self._client.embeddings.create(model=self._model, input=text)
        return list(response.data[0].embedding)


def build_filter(retrieval_filter: RetrievalFilter) -> Filter:
    return Filter(
        must=[
            FieldCondition(key=COURSE_NAME_KEY, match=MatchValue(value=retrieval_filter.course_name)),
            FieldCondition(key=ITEM_TITLE_KEY, match=MatchAny(any=list(retrieval_filter.item_titles))),
        ]
    )


class QdrantRetriever:
    """Course-document search over a Qdrant collection."""

    def __init__(self, client: AsyncQdrantClient, collection: str, embedder: Embedder):
        self._client = client
        self._collection = collection
        self._embedder = embedder

    async def retrieve(
        self,
        query: str,
        *,
        limit: int,
        score_threshold: float,
        filter: RetrievalFilter,
    ) -> list[RetrievedChunk]:
        query_embedding = await self._embedder.embed_query(query)

        response = await self._client.query_points(
            collection_name=self._collection,
            query=query_embedding,
            limit=limit,
            query_filter=build_filter(filter),
            score_threshold=score_threshold,
            with_payload=True,
        )

        chunks: list[RetrievedChunk] = []
        for hit in response.points:
            payload = dict(hit.payload or {})
            content = ""
            for key in _CONTENT_KEYS:
                if payload.get(key):
                    content = str(payload[key])
                    break
            metadata = {k: v for k, v in payload.items() if k not in _CONTENT_KEYS}
            chunks.append(RetrievedChunk(content=content, metadata=metadata, score=float(hit.score)))

        logger.debug(
            f"Retrieved {len(chunks)} chunk(s) from {self._collection} "
            f"for course {filter.course_name!r} ({len(filter.item_titles)} item titles)"
        )
        return chunks

    async def close(self) -> None:
        await self._client.close()
