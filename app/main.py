"""FastAPI entry point. Wraps the scamscope engine as an HTTP service.

Exposes GET / (health), POST /prefilter (cheap gate), POST /analyze (full
verdict), POST /similar (scenario lookup) and POST /resolve (redirect chase).
"""

import logging
from typing import List

from fastapi import FastAPI, Depends, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.models import AnalyzeRequest, PrefilterRequest, ResolveRequest, SimilarRequest
from app.auth import verify_api_key
from scamscope.config import SIM_INDEX_PATH, ConfigError, default_config
from scamscope.engine import analyze_thread
from scamscope.models import (
    AnalyzeOptions,
    PrefilterResult,
    RedirectResolution,
    SimIndexItem,
    ThreadAnalysis,
)
from scamscope.prefilter import prefilter
from scamscope.resolver import RequestsFetcher, resolve_redirect_chain
from scamscope.similarity import SimIndexError, load_sim_index, rank_similar, vec_from_signals

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"

app = FastAPI(
    title="scamscope API",
    description="Conversational scam-risk scoring: prefilter gate, thread analysis, similarity and redirect resolution",
    version=VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Similarity index shared by every request; filled on startup.
sim_index: List[SimIndexItem] = []
fetcher = RequestsFetcher()


@app.on_event("startup")
async def _on_startup() -> None:
    try:
        sim_index[:] = load_sim_index(SIM_INDEX_PATH)
    except SimIndexError as e:
        logger.error(f"Similarity index rejected, continuing without it: {e}")
        sim_index.clear()
    logger.info(f"scamscope API v{VERSION} started | sim_items={len(sim_index)} | Docs: /docs | Health: GET /")


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.error(f"422 VALIDATION ERROR | {request.url.path} | {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors(), "message": "Invalid request payload."},
    )


@app.get("/")
async def health_check() -> dict:
    return {
        "status": "online",
        "service": "scamscope API",
        "version": VERSION,
        "simIndexItems": len(sim_index),
    }


@app.post("/prefilter", response_model=PrefilterResult)
async def run_prefilter(
    request: PrefilterRequest,
    api_key: str = Depends(verify_api_key),
) -> PrefilterResult:
    """Score a thread's sender text and decide none / soft / auto."""
    result = prefilter(request.threadText, request.to_options())
    logger.info(
        f"PREFILTER  chars={len(request.threadText)}  score={result.score}  "
        f"action={result.action}  gate={result.gate_pass}  signals={len(result.signals)}"
    )
    return result


@app.post("/analyze", response_model=ThreadAnalysis)
async def run_analysis(
    request: AnalyzeRequest,
    api_key: str = Depends(verify_api_key),
) -> ThreadAnalysis:
    """Full thread analysis.

    Pipeline stages:
    1. Prefilter gate over sender lines
    2. Turn split and context-window selection
    3. Per-turn scoring, chain detectors and call flags
    4. Escalation circuit for the final risk level
    5. Receiver gate and similarity boost for display scores
    """
    try:
        analysis = analyze_thread(
            request.threadText,
            call=request.callContext.to_call_context(),
            options=request.to_options(),
            sim_items=sim_index,
        )
    except ConfigError as e:
        logger.warning(f"ANALYZE rejected overrides: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(
        f"ANALYZE  chars={len(request.threadText)}  score={analysis.score_total:.0f}  "
        f"risk={analysis.risk_level}  stage={analysis.stage_peak}  "
        f"hits={len(analysis.hits)}  ui={analysis.ui_score_total:.0f}"
    )
    return analysis


@app.post("/similar")
async def find_similar(
    request: SimilarRequest,
    api_key: str = Depends(verify_api_key),
) -> dict:
    """Closest scenarios of the loaded index for a vector or a thread."""
    if request.vec is not None:
        query = request.vec
    else:
        analysis = analyze_thread(request.threadText, options=AnalyzeOptions(prefilter_enabled=False))
        query = vec_from_signals(analysis.signals)

    matches = rank_similar(query, sim_index, top_k=request.topK, min_sim=request.minSim)
    logger.info(f"SIMILAR  keys={len(query)}  index={len(sim_index)}  matches={len(matches)}")
    return {
        "query": query,
        "matches": [m.model_dump() for m in matches],
        "gate": default_config().sim_gate,
    }


@app.post("/resolve", response_model=RedirectResolution)
async def resolve_url(
    request: ResolveRequest,
    api_key: str = Depends(verify_api_key),
) -> RedirectResolution:
    """Follow real HTTP redirects of one URL."""
    settings = default_config().prefilter
    resolution = await resolve_redirect_chain(
        request.url,
        fetch=fetcher,
        max_hops=settings.max_redirect_hops if request.maxHops is None else request.maxHops,
        timeout_ms=settings.resolve_timeout_ms if request.timeoutMs is None else request.timeoutMs,
    )
    logger.info(
        f"RESOLVE  start={resolution.start_url}  final={resolution.final_url}  "
        f"hops={resolution.hops}  error={resolution.error.value if resolution.error else 'none'}"
    )
    return resolution


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
