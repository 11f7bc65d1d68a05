"""FastAPI app exposing scans as Server-Sent Events."""

import json

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from .main import build_session
from .models import Demographics
from .profile import detect_city_profile, profile_from_traits
from .scanner import ScanInProgressError, ScanSession

load_dotenv()

app = FastAPI(title="Market Scan")
app.state.session_factory = build_session
app.state.session = None


class OverrideRequest(BaseModel):
    category: str
    override: bool


def _session(request: Request) -> ScanSession:
    state = request.app.state
    if state.session is None:
        state.session = state.session_factory()
    return state.session


def _busy() -> JSONResponse:
    return JSONResponse({"error": "A scan is already running."}, status_code=409)


async def _stream(events) -> StreamingResponse | JSONResponse:
    # The first step claims the session, so a concurrent request gets its 409
    # before any response headers go out.
    try:
        first = await events.__anext__()
    except ScanInProgressError:
        return _busy()

    async def event_stream():
        try:
            yield _sse(first.kind, json.dumps(first.to_dict()))
            async for event in events:
                yield _sse(event.kind, json.dumps(event.to_dict()))
        finally:
            await events.aclose()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


@app.get("/api/triage")
async def triage(request: Request, city: str, state: str | None = None):
    """One-search triage of a city via Server-Sent Events."""
    session = _session(request)
    if session.is_scanning:
        return _busy()
    return await _stream(session.run_triage_scan(city, state))


@app.get("/api/scan")
async def scan(
    request: Request,
    city: str,
    state: str | None = None,
    population: int | None = None,
    income: int | None = None,
    homeownership: float | None = None,
    home_value: int | None = None,
    lat: float | None = None,
    lng: float | None = None,
    trait: list[str] | None = Query(default=None),
):
    """Full category scan via Server-Sent Events, one event per category."""
    session = _session(request)
    if session.is_scanning:
        return _busy()

    if trait:
        profile = profile_from_traits(trait, session.config)
    else:
        demographics = Demographics(
            population=population,
            median_household_income=income,
            homeownership_rate=homeownership,
            median_home_value=home_value,
        )
        profile = detect_city_profile(demographics, lat, lng, session.config)
    return await _stream(session.run_full_scan(city, state, profile))


@app.post("/api/stop")
async def stop(request: Request):
    session = _session(request)
    was_scanning = session.is_scanning
    session.stop_scan()
    return {"stopping": was_scanning}


@app.post("/api/override")
async def override(request: Request, body: OverrideRequest):
    session = _session(request)
    try:
        session.set_manual_override(body.category, body.override)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"No result for category {body.category!r}")
    return {"validation_summary": session.snapshot()["validation_summary"]}


@app.get("/api/state")
async def state(request: Request):
    return _session(request).snapshot()


def _sse(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"
