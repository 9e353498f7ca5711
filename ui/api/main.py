"""FastAPI layer that exposes search and index rebuild."""
from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query as FastAPIQuery
from pydantic import BaseModel

from application.services.cancellation import CancellationToken
from application.use_cases.search import SearchService
from domain.entities import DocumentType, RankingContext, SearchFilter, SearchOptions
from domain.errors import CorpusUnavailableError, SearchCancelledError
from infrastructure.config import ContainerConfig, build_default_container, build_search_service
from ui.logging_utils import setup_logging

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30.0


class SearchResponse(BaseModel):
    query: str
    results: list[dict]


class RebuildResponse(BaseModel):
    generation: int
    documents: int
    tokens: int


@lru_cache(maxsize=1)
def get_search_service() -> SearchService:
    setup_logging()
    return build_search_service(build_default_container(ContainerConfig.from_env()))


def create_app() -> FastAPI:
    app = FastAPI(title="AutoSnippet Search API")

    @app.get("/search", response_model=SearchResponse)
    def search_endpoint(
        q: str = FastAPIQuery("", description="User query"),
        limit: Optional[int] = FastAPIQuery(None, description="Maximum number of results"),
        semantic: Optional[bool] = None,
        ranking: Optional[bool] = None,
        fine_ranking: Optional[bool] = None,
        cache: Optional[bool] = None,
        use_index: Optional[bool] = None,
        type: Optional[DocumentType] = None,
        category: Optional[str] = None,
        language: Optional[str] = None,
        weights: Optional[str] = FastAPIQuery(None, description='JSON object, e.g. {"bm25": 0.6}'),
        service: SearchService = Depends(get_search_service),
    ) -> SearchResponse:
        parsed_weights = None
        if weights:
            try:
                parsed_weights = json.loads(weights)
            except json.JSONDecodeError as exc:
                raise HTTPException(status_code=422, detail=f"weights is not valid JSON: {exc}") from exc
            if not isinstance(parsed_weights, dict):
                raise HTTPException(status_code=422, detail="weights must be a JSON object")
        options = SearchOptions(
            semantic=semantic,
            ranking=ranking,
            fine_ranking=fine_ranking,
            limit=limit,
            filter=SearchFilter(type=type, category=category, language=language),
            weights=parsed_weights,
            cache=cache,
            use_index=use_index,
            context=RankingContext(language=language, category=category),
        )
        try:
            results = service.search(q, options, token=CancellationToken(REQUEST_TIMEOUT_SECONDS))
        except SearchCancelledError as exc:
            raise HTTPException(status_code=504, detail=str(exc)) from exc
        except CorpusUnavailableError as exc:
            logger.error("Search failed: %s", exc)
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return SearchResponse(query=q, results=[result.to_dict() for result in results])

    @app.post("/index/rebuild", response_model=RebuildResponse)
    def rebuild_endpoint(service: SearchService = Depends(get_search_service)) -> RebuildResponse:
        try:
            snapshot = service.build_index()
        except CorpusUnavailableError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return RebuildResponse(
            generation=snapshot.generation,
            documents=snapshot.index.size,
            tokens=len(snapshot.index.postings),
        )

    @app.get("/stats")
    def stats_endpoint(service: SearchService = Depends(get_search_service)) -> dict:
        return service.stats()

    return app


app = create_app()


__all__ = ["app", "create_app", "get_search_service"]
