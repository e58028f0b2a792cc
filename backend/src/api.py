import logging
from typing import Any, Dict, List

import sentry_sdk
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from combat_analysis.analyze import analyze, analyze_many
from combat_analysis.errors import MalformedEventError, RegistryError
from encounter import EncounterContext
from settings import Settings

settings = Settings.from_env()
logging.basicConfig(level=settings.log_level)

if settings.sentry_enabled:
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        attach_stacktrace=True,
    )
app = FastAPI()


async def catch_exceptions_middleware(request, call_next):
    try:
        return await call_next(request)
    except Exception as e:
        logging.exception(e)
        return Response("Internal server error", status_code=500)


# Add this middleware first so 500 errors have CORS headers
app.middleware("http")(catch_exceptions_middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)


class AnalyzeRequest(BaseModel):
    context: EncounterContext
    events: List[Dict[str, Any]]


class AnalyzeBatchRequest(BaseModel):
    runs: List[AnalyzeRequest]


def _malformed_event(response: Response, e: MalformedEventError):
    response.status_code = 422
    return {
        "error": str(e),
        "index": e.index,
        "timestamp": e.timestamp,
        "field": e.field,
    }


def _registry_error(response: Response, e: RegistryError):
    logging.error(f"Unusable analysis profile: {e}")
    response.status_code = 500
    return {"error": str(e)}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/analyze_fight")
def analyze_fight(request: AnalyzeRequest, response: Response):
    if request.context.start_time > request.context.end_time:
        response.status_code = 400
        return {"error": "Fight ends before it starts"}

    try:
        result = analyze(request.events, request.context)
    except MalformedEventError as e:
        return _malformed_event(response, e)
    except RegistryError as e:
        return _registry_error(response, e)

    return {"data": result.model_dump(mode="json")}


@app.post("/analyze_fights")
def analyze_fights(request: AnalyzeBatchRequest, response: Response):
    try:
        results = analyze_many(
            ((run.events, run.context) for run in request.runs),
            max_workers=settings.analysis_max_workers,
        )
    except MalformedEventError as e:
        return _malformed_event(response, e)
    except RegistryError as e:
        return _registry_error(response, e)

    return {"data": [result.model_dump(mode="json") for result in results]}
