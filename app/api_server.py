"""FastAPI entrypoint exposing signal interpretation, session context and content index APIs.

Run with ``uvicorn app.api_server:app``; the module-level app is built on first access.
Tests and embedders call ``create_app`` with their own service.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from gensite_advisor.service import AdvisorService, EmbeddingServiceUnavailable
from gensite_advisor.signal_interpreter import InterpretationContext
from gensite_advisor.signals import coerce_events


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class EmbedRecipesRequest(_CamelModel):
    recipes: list[dict[str, Any]] = Field(default_factory=list)
    batch_size: int | None = Field(default=None, alias="batchSize", ge=1, le=500)


class EmbedImagesRequest(_CamelModel):
    images: list[dict[str, Any]] = Field(default_factory=list)


class QueryRequest(_CamelModel):
    query: str = Field(min_length=1)
    top_k: int = Field(default=5, alias="topK", ge=1, le=50)
    content_type: Literal["recipe", "hero-image"] | None = Field(default=None, alias="contentType")


class InterpretRequest(_CamelModel):
    signals: list[dict[str, Any]] = Field(default_factory=list)
    query: str | None = None
    previous_queries: list[Any] = Field(default_factory=list, alias="previousQueries")
    profile_hints: dict[str, Any] | None = Field(default=None, alias="profileHints")
    session_id: str | None = Field(default=None, alias="sessionId")
    preset: str | None = None


class QueryEntryRequest(_CamelModel):
    query: str = Field(min_length=1)
    timestamp: int | None = None
    intent: str | None = None
    entities: dict[str, list[str]] = Field(default_factory=dict)
    generated_path: str | None = Field(default=None, alias="generatedPath")
    recommended_products: list[str] = Field(default_factory=list, alias="recommendedProducts")
    recommended_recipes: list[str] = Field(default_factory=list, alias="recommendedRecipes")
    block_types: list[str] = Field(default_factory=list, alias="blockTypes")
    journey_stage: Literal["exploring", "comparing", "deciding"] | None = Field(default=None, alias="journeyStage")
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    next_best_action: str | None = Field(default=None, alias="nextBestAction")


ENDPOINTS = {
    "POST /embed": "Embed a recipes JSON payload into the content index",
    "POST /embed-images": "Embed a hero images JSON payload into the content index",
    "POST /embed-single": "Embed a single recipe (testing)",
    "POST /query": "Query the content index (testing)",
    "GET /status": "Content index status",
    "POST /interpret": "Interpret browsing signals into an intent profile",
    "GET /sessions/{session_id}": "Session query history and coverage",
    "POST /sessions/{session_id}/queries": "Record a query in the session history",
    "GET /sessions/{session_id}/gaps": "Research gaps for a journey stage",
    "DELETE /sessions/{session_id}": "Clear the session history",
}


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(service: AdvisorService | None = None) -> FastAPI:
    advisor = service or AdvisorService()

    app = FastAPI(title="Gensite Advisor", version="0.3.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    app.state.service = advisor

    @app.exception_handler(StarletteHTTPException)
    async def http_error(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = str(first.get("msg") or "Invalid request")
        return _error(400, f"{location}: {message}" if location else message)

    @app.get("/")
    def index() -> dict:
        return {
            "endpoints": ENDPOINTS,
            "usage": "POST recipes to /embed or hero images to /embed-images",
        }

    @app.get("/status")
    def status() -> dict:
        return advisor.status()

    @app.post("/embed")
    def embed(request: EmbedRecipesRequest) -> dict:
        try:
            return advisor.embed_recipes(request.recipes, batch_size=request.batch_size)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except EmbeddingServiceUnavailable as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc

    @app.post("/embed-images")
    def embed_images(request: EmbedImagesRequest) -> dict:
        try:
            return advisor.embed_hero_images(request.images)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except EmbeddingServiceUnavailable as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc

    @app.post("/embed-single")
    def embed_single(recipe: dict[str, Any]) -> dict:
        try:
            return advisor.embed_single(recipe)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except EmbeddingServiceUnavailable as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except RuntimeError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    @app.post("/query")
    def query(request: QueryRequest) -> dict:
        try:
            return advisor.query_content(
                query=request.query,
                top_k=request.top_k,
                content_type=request.content_type,
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except EmbeddingServiceUnavailable as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except RuntimeError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc

    @app.post("/interpret")
    def interpret(request: InterpretRequest) -> dict:
        context = InterpretationContext(
            events=coerce_events(request.signals),
            query=(request.query or "").strip() or None,
            previous_queries=list(request.previous_queries),
            profile_hints=request.profile_hints,
        )
        try:
            return advisor.interpret(context=context, session_id=request.session_id, preset=request.preset)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.get("/sessions/{session_id}")
    def get_session(session_id: str) -> dict:
        return advisor.get_session(session_id)

    @app.post("/sessions/{session_id}/queries")
    def add_query(session_id: str, request: QueryEntryRequest) -> dict:
        entry = request.model_dump(by_alias=True, exclude_none=True)
        try:
            return advisor.record_query(session_id, entry)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.get("/sessions/{session_id}/gaps")
    def session_gaps(session_id: str, stage: str = "exploring") -> dict:
        try:
            return advisor.research_gaps(session_id, stage)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.delete("/sessions/{session_id}")
    def clear_session(session_id: str) -> dict:
        return advisor.clear_session(session_id)

    return app


_APP: FastAPI | None = None


def __getattr__(name: str) -> Any:
    # Importing the module for create_app must not open the default data directory.
    global _APP
    if name == "app":
        if _APP is None:
            _APP = create_app()
        return _APP
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
