"""
LLM Committee HTTP API: FastAPI app factory.

Use: uvicorn llm_committee.server:app
Or:  llm-committee serve
"""

from contextlib import asynccontextmanager
from typing import Optional, Union

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from .catalog import DEFAULT_COMMITTEE_IDS, DEFAULT_JUDGE_ID, KNOWN_MODELS, display_name, provider_name
from .committee import encode_sse, stream_committee
from .criteria import PRESETS, generate_criteria, get_criteria
from .errors import BackendError, ParsingError, PreconditionError
from .judging import judge
from .openrouter import BackendClient
from .schemas import AssembledResponse, Criteria, JudgingError, JudgingMode

MISSING_KEY_ERROR = "OpenRouter API key not configured"


class CommitteeRequest(BaseModel):
    prompt: str = ""
    models: list[str] = Field(default_factory=list)


class JudgeResponseIn(BaseModel):
    modelId: str
    modelName: str = ""
    content: str = ""


class JudgeRequest(BaseModel):
    prompt: str = ""
    responses: list[JudgeResponseIn] = Field(default_factory=list)
    judgingMode: str = JudgingMode.SINGLE.value
    judgeModelId: Optional[str] = None
    judgeModelIds: list[str] = Field(default_factory=list)
    criteria: Union[str, dict, None] = None


class GenerateCriteriaRequest(BaseModel):
    description: str = ""
    modelId: str = ""


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _resolve_criteria(value: Union[str, dict, None]) -> Criteria:
    if isinstance(value, dict):
        return Criteria.model_validate({"id": "custom", "isCustom": True, **value})
    return get_criteria(value) if value else get_criteria()


def _judge_ids(req: JudgeRequest, mode: JudgingMode) -> list[str]:
    if mode is JudgingMode.EXECUTIVE and req.judgeModelIds:
        return list(req.judgeModelIds)
    primary = [req.judgeModelId] if req.judgeModelId else []
    return primary + list(req.judgeModelIds)


def create_app(client: Optional[BackendClient] = None) -> FastAPI:
    """Build the app. A caller-supplied client is used as-is and not closed on shutdown."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.client = client if client is not None else BackendClient()
        try:
            yield
        finally:
            if client is None:
                await app.state.client.aclose()

    app = FastAPI(
        title="LLM Committee API",
        description="Fan a prompt out to several models, stream their answers, and judge them",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.post("/api/committee")
    async def committee(req: CommitteeRequest, request: Request):
        backend = request.app.state.client
        if not backend.configured:
            return _error(MISSING_KEY_ERROR, 500)
        try:
            stream = stream_committee(backend, req.prompt, req.models)
        except PreconditionError as e:
            return _error(str(e), 400)

        async def body():
            try:
                async for event in stream:
                    yield encode_sse(event)
            finally:
                await stream.aclose()

        logger.info("Committee stream started for {} models", len(stream.backend_ids))
        return StreamingResponse(
            body(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    @app.post("/api/judge")
    async def judge_route(req: JudgeRequest, request: Request):
        backend = request.app.state.client
        if not backend.configured:
            return _error(MISSING_KEY_ERROR, 500)
        try:
            mode = JudgingMode(req.judgingMode)
        except ValueError:
            return _error(f"Unknown judging mode '{req.judgingMode}'", 400)
        try:
            criteria = _resolve_criteria(req.criteria)
        except ValidationError:
            return _error("Invalid criteria", 400)

        responses = [
            AssembledResponse(
                backend_id=r.modelId,
                label=r.modelName or display_name(r.modelId),
                content=r.content,
                done=True,
            )
            for r in req.responses
        ]
        outcome = await judge(backend, req.prompt, responses, mode, _judge_ids(req, mode), criteria)

        if isinstance(outcome, JudgingError):
            status = 502 if outcome.kind == "all_judges_failed" else 400
            return JSONResponse(outcome.to_wire(), status_code=status)
        return JSONResponse(outcome.to_wire())

    @app.post("/api/generate-criteria")
    async def generate_criteria_route(req: GenerateCriteriaRequest, request: Request):
        backend = request.app.state.client
        if not backend.configured:
            return _error(MISSING_KEY_ERROR, 500)
        try:
            criteria = await generate_criteria(backend, req.description, req.modelId)
        except PreconditionError as e:
            return _error(str(e), 400)
        except (BackendError, ParsingError) as e:
            logger.warning("Criteria generation via {} failed: {}", req.modelId, e)
            return _error(str(e), 502)
        return JSONResponse(criteria.to_wire())

    @app.get("/api/criteria")
    async def list_criteria():
        return {"presets": [c.to_wire() for c in PRESETS]}

    @app.get("/api/models")
    async def list_models():
        return {
            "models": [{**m, "provider": provider_name(m["id"])} for m in KNOWN_MODELS],
            "defaultCommittee": DEFAULT_COMMITTEE_IDS,
            "defaultJudge": DEFAULT_JUDGE_ID,
        }

    return app


app = create_app()
