"""
Vector index client for protocol retrieval.

Speaks the index's HTTP query API: POST {host}/query with a vector and topK,
returning ranked ids and scores.
"""

from dataclasses import dataclass

import httpx

from wellness_os.config import Settings
from wellness_os.errors import UpstreamServiceError
from wellness_os.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class VectorMatch:
    id: str
    score: float
    metadata: dict


class VectorSearchClient:
    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None):
        settings.require("VECTOR_INDEX_HOST", "VECTOR_INDEX_API_KEY")
        host = settings.VECTOR_INDEX_HOST.rstrip("/")
        if not host.startswith("http"):
            host = f"https://{host}"
        self.namespace = settings.VECTOR_INDEX_NAMESPACE
        self._client = http_client or httpx.AsyncClient(
            base_url=host,
            headers={
                "Api-Key": settings.VECTOR_INDEX_API_KEY,
                "Content-Type": "application/json",
            },
            timeout=settings.VECTOR_SEARCH_TIMEOUT_SECONDS,
        )

    async def query(self, embedding: list[float], top_k: int) -> list[VectorMatch]:
        body = {"vector": embedding, "topK": top_k, "includeMetadata": True}
        if self.namespace:
            body["namespace"] = self.namespace

        try:
            response = await self._client.post("/query", json=body)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Vector search returned error status",
                status_code=e.response.status_code,
                error=str(e),
            )
            raise UpstreamServiceError(
                f"Vector search failed with {e.response.status_code}",
                service="vector_search",
                operation="query",
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Vector search request failed", error=str(e), error_type=type(e).__name__)
            raise UpstreamServiceError(
                f"Vector search failed: {e}", service="vector_search", operation="query"
            ) from e

        return [
            VectorMatch(
                id=str(match["id"]),
                score=float(match.get("score") or 0.0),
                metadata=match.get("metadata") or {},
            )
            for match in payload.get("matches", [])
            if match.get("id")
        ]

    async def close(self) -> None:
        await self._client.aclose()
