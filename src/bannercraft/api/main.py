"""Bannercraft FastAPI application.

This module is the single entry point for the web service.  It defines the
FastAPI ``app`` instance, all REST API routes, and the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
Every generation request is handled synchronously, start to finish, inside
the request:

- **Validation** is done by the Pydantic models in :mod:`bannercraft.api.models`.
- **Persistence** goes through :class:`~bannercraft.core.database.DesignDB`
  (SQLite), created once per application in the lifespan handler.
- **Prompt rendering** fills the panel templates via
  :mod:`bannercraft.core.prompt_template`.
- **Image generation** is performed by
  :class:`~bannercraft.core.generation.BannerGenerator`, wrapped by the
  status-tracking functions in :mod:`bannercraft.core.processing`.
- **Generated images** are written by
  :class:`~bannercraft.core.image_store.ImageStore` and served by FastAPI's
  ``StaticFiles`` under ``/designs``.

Endpoints
---------
========  ================================  ==================================
Method    Path                              Purpose
========  ================================  ==================================
POST      ``/api/generate-initial-design``  Create and generate a new design
POST      ``/api/generate-initial-design-new``  Plan panels, then generate a design
POST      ``/api/generate-design-iteration``  Regenerate panels of a design
GET       ``/api/design/{id}``              Design (or iteration) with history
POST      ``/api/prompts``                  Create a prompt template
GET       ``/api/prompts``                  List prompt templates
GET       ``/api/prompts/{id}``             Single prompt template
PATCH     ``/api/prompts/{id}``             Update a prompt template
DELETE    ``/api/prompts/{id}``             Delete a prompt template
POST      ``/api/generate-json-plan``       JSON plan from a free-text prompt
GET       ``/api/health``                   Liveness and version
========  ================================  ==================================

Usage
-----
CLI (installed entry point)::

    bannercraft

Direct invocation::

    python -m bannercraft.api.main
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from bannercraft import __version__
from bannercraft.api.models import (
    CreatePromptRequest,
    GenerateDesignIterationRequest,
    GenerateInitialDesignRequest,
    JsonPlanRequest,
    ListPromptsQuery,
    UpdatePromptRequest,
)
from bannercraft.core.config import config
from bannercraft.core.database import DesignDB
from bannercraft.core.exceptions import (
    BannercraftError,
    GenerationError,
    PromptNotFoundError,
    PromptTemplateError,
)
from bannercraft.core.generation import BannerGenerator
from bannercraft.core.image_store import ImageStore
from bannercraft.core.models import Design, DesignIteration, DesignStatus, PanelPosition, Prompt
from bannercraft.core.processing import ProcessingResult, process_design, process_iteration
from bannercraft.core.prompt_template import (
    apply_panel_plan,
    build_panel_plan_prompt,
    build_variable_context,
    render_prompt_template,
)
from bannercraft.logging_config import configure_logging

logger = logging.getLogger(__name__)

DEFAULT_PROMPTS_FILE: Path = Path(__file__).resolve().parent.parent / "data" / "default_prompts.json"


# ---------------------------------------------------------------------------
# Application lifecycle: database, image store and generator setup.
# ---------------------------------------------------------------------------


def _mount_designs(app: FastAPI, url_prefix: str, directory: Path) -> None:
    """Serve generated panels from *directory* under *url_prefix*.

    Any earlier ``designs`` mount is replaced, so each lifespan serves the
    directory of the configuration it was started with.
    """
    app.router.routes[:] = [
        route for route in app.router.routes if getattr(route, "name", None) != "designs"
    ]
    app.mount(url_prefix, StaticFiles(directory=str(directory)), name="designs")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle.

    On startup:
        Opens the :class:`DesignDB`, seeds the packaged default prompts into
        an empty prompts table (when enabled), stores the database,
        :class:`ImageStore` and :class:`BannerGenerator` on ``app.state``,
        and mounts the designs directory for static serving.
        The OpenAI client itself is created lazily on first generation.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    app.state.config = config
    app.state.db = DesignDB(config.database_path)
    if config.seed_default_prompts:
        with open(DEFAULT_PROMPTS_FILE, encoding="utf-8") as handle:
            app.state.db.seed_prompts(json.load(handle))
    app.state.image_store = ImageStore(config.designs_dir, config.designs_url_prefix)
    app.state.generator = BannerGenerator(config, app.state.image_store)
    _mount_designs(app, config.designs_url_prefix, config.designs_dir)
    logger.info("Bannercraft %s started (database=%s).", __version__, config.database_path)

    yield

    logger.info("Bannercraft shutting down.")


# ---------------------------------------------------------------------------
# FastAPI application instance.
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Bannercraft",
    description="Two-panel AI banner generation with iterative refinement.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BannercraftError)
async def bannercraft_error_handler(request: Request, exc: BannercraftError) -> JSONResponse:
    """Return unhandled domain errors as JSON 500s instead of plain text."""
    logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Serialisation helpers.
# ---------------------------------------------------------------------------


def _camel(data: dict[str, Any]) -> dict[str, Any]:
    """Convert the top-level keys of a record dict to camelCase."""
    return {to_camel(key): value for key, value in data.items()}


def _prompt_payload(prompt: Prompt) -> dict[str, Any]:
    return _camel(prompt.to_dict())


def _iteration_payload(iteration: DesignIteration, requested_id: str | None) -> dict[str, Any]:
    payload = _camel(iteration.to_dict())
    payload["isRequested"] = iteration.id == requested_id
    return payload


def _design_payload(design: Design) -> dict[str, Any]:
    return _camel(design.to_dict())


# ---------------------------------------------------------------------------
# Prompt resolution and rendering helpers.
# ---------------------------------------------------------------------------


def _resolve_panel_prompts(
    db: DesignDB, req: GenerateInitialDesignRequest
) -> tuple[Prompt, Prompt]:
    """Pick the top and bottom prompt templates for a new design.

    Explicitly requested prompt ids are looked up among active prompts and
    must be bound to the panel they were requested for.  Any panel without
    an explicit prompt falls back to the active default for that panel.

    Returns:
        Tuple of ``(top_prompt, bottom_prompt)``.

    Raises:
        PromptNotFoundError: If a requested prompt is missing, inactive or
            bound to the other panel, or no default exists for a panel.
    """
    top_prompt: Prompt | None = None
    bottom_prompt: Prompt | None = None

    requested = [str(pid) for pid in (req.top_panel_prompt_id, req.bottom_panel_prompt_id) if pid]
    if requested:
        found = db.get_active_prompts_by_ids(requested)
        if req.top_panel_prompt_id:
            top_prompt = next(
                (
                    p
                    for p in found
                    if p.id == str(req.top_panel_prompt_id)
                    and p.panel_position == PanelPosition.TOP
                ),
                None,
            )
            if top_prompt is None:
                raise PromptNotFoundError(
                    f"Top panel prompt with ID {req.top_panel_prompt_id} not found or inactive"
                )
        if req.bottom_panel_prompt_id:
            bottom_prompt = next(
                (
                    p
                    for p in found
                    if p.id == str(req.bottom_panel_prompt_id)
                    and p.panel_position == PanelPosition.BOTTOM
                ),
                None,
            )
            if bottom_prompt is None:
                raise PromptNotFoundError(
                    f"Bottom panel prompt with ID {req.bottom_panel_prompt_id} not found or inactive"
                )

    if top_prompt is None or bottom_prompt is None:
        default_top, default_bottom = db.get_default_prompts()
        top_prompt = top_prompt or default_top
        bottom_prompt = bottom_prompt or default_bottom

    if top_prompt is None:
        raise PromptNotFoundError("No active default prompt configured for the TOP panel")
    if bottom_prompt is None:
        raise PromptNotFoundError("No active default prompt configured for the BOTTOM panel")
    return top_prompt, bottom_prompt


def _render_and_process(
    db: DesignDB,
    payload: dict[str, Any],
    top: tuple[Prompt, dict[str, Any]],
    bottom: tuple[Prompt, dict[str, Any]],
) -> ProcessingResult:
    """Render both panel prompts, create the design and generate it.

    Args:
        db: Design database.
        payload: Request in its camelCase wire shape.
        top: ``(prompt template, variable context)`` for the top panel.
        bottom: ``(prompt template, variable context)`` for the bottom panel.

    Raises:
        HTTPException: 400 if a required template variable has no value.
    """
    (top_prompt, top_context), (bottom_prompt, bottom_context) = top, bottom
    try:
        top_text = render_prompt_template(top_prompt.prompt_template, top_context)
        bottom_text = render_prompt_template(bottom_prompt.prompt_template, bottom_context)
    except PromptTemplateError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    design = db.create_design(payload, top_text, bottom_text, top_prompt.id, bottom_prompt.id)
    return process_design(db, app.state.generator, design.id, bucket=config.storage_bucket)


# ---------------------------------------------------------------------------
# Design routes.
# ---------------------------------------------------------------------------


@app.post("/api/generate-initial-design", status_code=201)
def generate_initial_design(req: GenerateInitialDesignRequest) -> dict:
    """Create a design and generate both of its panels.

    This endpoint:

    1. Resolves the top and bottom prompt templates (explicit or default).
    2. Renders each template with the panel-scoped variable context.
    3. Creates the design record (PENDING).
    4. Generates both panels, updating the record to COMPLETED or FAILED.

    Args:
        req: Validated :class:`GenerateInitialDesignRequest` payload.

    Returns:
        Dictionary with ``success`` and ``data`` (the processing result).
        A failed generation still returns 201 with ``data.success = False``;
        the design record holds the error.

    Raises:
        HTTPException: 400 for unknown/inactive prompts, missing defaults or
            template variables without a value.
    """
    db: DesignDB = app.state.db
    payload = req.to_wire()

    try:
        top_prompt, bottom_prompt = _resolve_panel_prompts(db, req)
    except PromptNotFoundError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    result = _render_and_process(
        db,
        payload,
        (top_prompt, build_variable_context(payload, "top")),
        (bottom_prompt, build_variable_context(payload, "bottom")),
    )
    return {"success": True, "data": _camel(result.to_dict())}


@app.post("/api/generate-initial-design-new", status_code=201)
def generate_planned_initial_design(req: GenerateInitialDesignRequest) -> dict:
    """Plan each panel with the plan model, then generate the design.

    Works like :func:`generate_initial_design`, except that the plan model
    first decides per panel whether to include the logo, the headshot and
    inspiration images, and which contact values to show.  Those decisions
    are added to the panel's template context (see
    :func:`~bannercraft.core.prompt_template.apply_panel_plan`).

    Returns:
        Dictionary with ``success``, ``firstCall`` (the plan) and ``data``
        (the processing result).

    Raises:
        HTTPException: 400 for unknown/inactive prompts, missing defaults or
            template variables without a value, 502 if the plan call fails
            or the plan lacks a ``top`` or ``bottom`` object.
    """
    db: DesignDB = app.state.db
    payload = req.to_wire()

    try:
        top_prompt, bottom_prompt = _resolve_panel_prompts(db, req)
    except PromptNotFoundError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    generator: BannerGenerator = app.state.generator
    try:
        plan = generator.generate_json_plan(build_panel_plan_prompt(payload))
    except GenerationError as e:
        logger.error("Panel plan failed: %s", e)
        raise HTTPException(status_code=502, detail=str(e)) from e

    if not isinstance(plan, dict) or not all(
        isinstance(plan.get(panel), dict) for panel in ("top", "bottom")
    ):
        logger.error("Panel plan has no top/bottom objects: %r", plan)
        raise HTTPException(
            status_code=502, detail="Panel plan must contain 'top' and 'bottom' objects"
        )

    result = _render_and_process(
        db,
        payload,
        (top_prompt, apply_panel_plan(build_variable_context(payload, "top"), plan["top"])),
        (
            bottom_prompt,
            apply_panel_plan(build_variable_context(payload, "bottom"), plan["bottom"]),
        ),
    )
    return {"success": True, "firstCall": plan, "data": _camel(result.to_dict())}


@app.post("/api/generate-design-iteration", status_code=201)
def generate_design_iteration(req: GenerateDesignIterationRequest) -> dict:
    """Create an iteration of a completed design and regenerate its panels.

    Args:
        req: Validated :class:`GenerateDesignIterationRequest` payload.

    Returns:
        Dictionary with ``success``, ``data`` (iteration id, status,
        message, iteration number) and ``result`` (the processing result).

    Raises:
        HTTPException: 404 if the design does not exist, 400 if it is not
            COMPLETED, 500 if it has no stored prompts.
    """
    db: DesignDB = app.state.db
    design_id = str(req.initial_design_id)

    design = db.get_design(design_id)
    if design is None:
        raise HTTPException(
            status_code=404,
            detail=f"Initial design with ID {design_id} not found",
        )
    if design.status != DesignStatus.COMPLETED:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot iterate on design with status '{design.status.value}'.",
        )
    if not design.top_panel_prompt or not design.bottom_panel_prompt:
        raise HTTPException(status_code=500, detail="Initial design is missing required prompts.")

    iteration = db.create_iteration(
        design, req.top_panel_iteration_notes, req.bottom_panel_iteration_notes
    )
    result = process_iteration(db, app.state.generator, iteration.id, bucket=config.storage_bucket)

    return {
        "success": True,
        "data": {
            "id": iteration.id,
            "status": iteration.status.value,
            "message": "Design iteration started successfully",
            "iterationNumber": iteration.iteration_number,
        },
        "result": _camel(result.to_dict()),
    }


@app.get("/api/design/{design_id}")
def get_design(design_id: str) -> dict:
    """Return a design with all of its iterations.

    ``design_id`` may also be the id of an iteration; the parent design is
    returned with that iteration flagged as ``isRequested``.

    Raises:
        HTTPException: 404 if neither a design nor an iteration matches,
            500 if an iteration's parent design is missing.
    """
    db: DesignDB = app.state.db

    design = db.get_design(design_id)
    requested_iteration_id: str | None = None

    if design is None:
        iteration = db.get_iteration(design_id)
        if iteration is not None:
            requested_iteration_id = iteration.id
            design = db.get_design(iteration.design_id)
            if design is None:
                raise HTTPException(
                    status_code=500,
                    detail="Data integrity error: iteration found but parent design missing",
                )

    if design is None:
        raise HTTPException(status_code=404, detail="Design not found")

    data = _design_payload(design)
    if requested_iteration_id:
        data["requestedIterationId"] = requested_iteration_id
        data["requestedAsIteration"] = True
    data["iterations"] = [
        _iteration_payload(it, requested_iteration_id) for it in db.list_iterations(design.id)
    ]
    return {"success": True, "data": data}


# ---------------------------------------------------------------------------
# Prompt template routes.
# ---------------------------------------------------------------------------


@app.post("/api/prompts", status_code=201)
def create_prompt(req: CreatePromptRequest) -> dict:
    """Create a prompt template."""
    db: DesignDB = app.state.db
    prompt = db.create_prompt(**req.model_dump())
    return {"success": True, "data": _prompt_payload(prompt)}


@app.get("/api/prompts")
def list_prompts(
    panel_position: PanelPosition | None = Query(default=None, alias="panelPosition"),
    is_active: bool | None = Query(default=None, alias="isActive"),
    is_default: bool | None = Query(default=None, alias="isDefault"),
    limit: int = Query(default=50, gt=0, le=100),
    offset: int = Query(default=0, ge=0),
) -> dict:
    """Return one page of prompt templates.

    Returns:
        Dictionary with ``success`` and ``data`` holding ``prompts``,
        ``total``, ``limit`` and ``offset``.
    """
    db: DesignDB = app.state.db
    query = ListPromptsQuery(
        panel_position=panel_position,
        is_active=is_active,
        is_default=is_default,
        limit=limit,
        offset=offset,
    )
    prompts, total = db.list_prompts(
        panel_position=query.panel_position,
        is_active=query.is_active,
        is_default=query.is_default,
        limit=query.limit,
        offset=query.offset,
    )
    return {
        "success": True,
        "data": {
            "prompts": [_prompt_payload(p) for p in prompts],
            "total": total,
            "limit": query.limit,
            "offset": query.offset,
        },
    }


@app.get("/api/prompts/{prompt_id}")
def get_prompt(prompt_id: str) -> dict:
    db: DesignDB = app.state.db
    prompt = db.get_prompt(prompt_id)
    if prompt is None:
        raise HTTPException(status_code=404, detail="Prompt not found")
    return {"success": True, "data": _prompt_payload(prompt)}


@app.patch("/api/prompts/{prompt_id}")
def update_prompt(prompt_id: str, req: UpdatePromptRequest) -> dict:
    """Apply a partial update to a prompt template."""
    db: DesignDB = app.state.db
    prompt = db.update_prompt(prompt_id, req.changes())
    if prompt is None:
        raise HTTPException(status_code=404, detail="Prompt not found")
    return {"success": True, "data": _prompt_payload(prompt)}


@app.delete("/api/prompts/{prompt_id}")
def delete_prompt(prompt_id: str) -> dict:
    db: DesignDB = app.state.db
    if not db.delete_prompt(prompt_id):
        raise HTTPException(status_code=404, detail="Prompt not found")
    return {"success": True, "deleted": prompt_id}


# ---------------------------------------------------------------------------
# Utility routes.
# ---------------------------------------------------------------------------


@app.post("/api/generate-json-plan")
async def generate_json_plan(request: Request) -> dict:
    """Ask the plan model for a JSON document.

    An ``application/json`` body must be an object with a ``prompt`` key.
    Any other content type is taken verbatim as the prompt text.

    Raises:
        HTTPException: 400 if no prompt was supplied, 502 if the model call
            fails or does not return JSON.
    """
    raw = (await request.body()).decode("utf-8", errors="replace")
    content_type = request.headers.get("content-type", "")
    prompt: Any = raw
    if content_type.split(";")[0].strip().lower() == "application/json":
        try:
            body = json.loads(raw)
        except ValueError as e:
            raise HTTPException(status_code=400, detail="Prompt missing or invalid") from e
        prompt = body.get("prompt") if isinstance(body, dict) else None

    try:
        req = JsonPlanRequest(prompt=prompt if isinstance(prompt, str) else "")
    except ValidationError as e:
        raise HTTPException(status_code=400, detail="Prompt missing or invalid") from e

    generator: BannerGenerator = app.state.generator
    try:
        generated = await run_in_threadpool(generator.generate_json_plan, req.prompt)
    except GenerationError as e:
        logger.error("JSON plan failed: %s", e)
        raise HTTPException(status_code=502, detail=str(e)) from e

    return {"success": True, "generatedJson": generated}


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok", "version": __version__}


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~bannercraft.core.config.config`
    (``BANNERCRAFT_SERVER_HOST``, ``BANNERCRAFT_SERVER_PORT``,
    ``BANNERCRAFT_LOG_LEVEL``).  Defaults to ``0.0.0.0:3000``.

    This function is registered as the ``bannercraft`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    configure_logging(config.log_level)
    uvicorn.run(
        "bannercraft.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
