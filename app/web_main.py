from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, cast

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, Field

from app.compiler_wiring import build_compiler
from app.config import AppSettings, load_settings
from domain.errors import MalformedGraphError, ParseError, UnstructurableGraphError
from domain.models import GraphDocument
from domain.services.compile_dialogue import DialogueCompiler

logger = logging.getLogger(__name__)


class ExportRequest(BaseModel):
    document: GraphDocument
    start_node_id: str | None = None


class ImportRequest(BaseModel):
    script: str
    title: str | None = None


class LayoutRequest(BaseModel):
    document: GraphDocument
    pinned: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class ConvertorContext:
    settings: AppSettings
    compiler: DialogueCompiler


def create_app(settings: AppSettings) -> FastAPI:
    app = FastAPI(title="Dialogue Graph Convertor", default_response_class=ORJSONResponse)
    app.state.context = ConvertorContext(settings=settings, compiler=build_compiler(settings))

    @app.get("/api/health")
    def api_health() -> ORJSONResponse:
        return ORJSONResponse({"status": "ok"})

    @app.post("/api/export")
    def api_export(
        payload: ExportRequest,
        context: ConvertorContext = Depends(get_context),
    ) -> ORJSONResponse:
        try:
            script = context.compiler.export_script(
                payload.document, start_node_id=payload.start_node_id
            )
        except (MalformedGraphError, UnstructurableGraphError) as exc:
            logger.info("Export rejected: %s", exc)
            raise HTTPException(status_code=422, detail=graph_error_detail(exc)) from exc
        return ORJSONResponse({"script": script})

    @app.post("/api/import")
    def api_import(
        payload: ImportRequest,
        context: ConvertorContext = Depends(get_context),
    ) -> ORJSONResponse:
        try:
            parsed = context.compiler.import_parsed(payload.script, title=payload.title)
        except ParseError as exc:
            logger.info("Import rejected: %s", exc)
            raise HTTPException(
                status_code=400,
                detail={"error": exc.reason, "line": exc.line, "column": exc.column},
            ) from exc
        return ORJSONResponse(
            {
                "document": parsed.document.to_payload(),
                "diagnostics": [item.to_dict() for item in parsed.undefined_jumps],
            }
        )

    @app.post("/api/layout")
    def api_layout(
        payload: LayoutRequest,
        context: ConvertorContext = Depends(get_context),
    ) -> ORJSONResponse:
        document = context.compiler.resolve_layout(payload.document, pinned=payload.pinned)
        return ORJSONResponse({"document": document.to_payload()})

    return app


def get_context(request: Request) -> ConvertorContext:
    return cast(ConvertorContext, request.app.state.context)


def graph_error_detail(exc: MalformedGraphError | UnstructurableGraphError) -> dict[str, Any]:
    return {"error": exc.reason, "node_id": exc.node_id}


app = create_app(load_settings())
