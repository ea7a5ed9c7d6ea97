from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from dotenv import load_dotenv

from .classifier import classify_url, record_classification
from .models import ClassifyRequest, ClassifyResponse, DomainPattern, HistoryResponse
from .pattern_store import InMemoryPatternStore, PatternStore, PatternStoreError, SupabasePatternStore
from .scorer import fired_rules
from .validation import RateLimiter, validate_request


# Load environment variables from the repo root .env (so SUPABASE_* works in local dev)
_HERE = Path(__file__).resolve()
_AGENT_ROOT = _HERE.parents[1]
load_dotenv(_AGENT_ROOT / ".env", override=False)

logging.basicConfig(
    level=os.getenv("URLGUARD_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _cors_allow_origins() -> list[str]:
    raw = os.getenv("URLGUARD_CORS_ORIGINS", "").strip()
    if not raw:
        return ["http://localhost:3000"]
    return [o.strip() for o in raw.split(",") if o.strip()]


def _build_store() -> PatternStore:
    supabase_url = os.getenv("SUPABASE_URL", "").strip()
    supabase_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip()
    if supabase_url and supabase_key:
        logger.info("Using hosted pattern store at %s", supabase_url)
        return SupabasePatternStore(
            supabase_url,
            supabase_key,
            timeout_s=float(os.getenv("SUPABASE_TIMEOUT_S", "5")),
        )
    logger.info("SUPABASE_URL/SUPABASE_SERVICE_ROLE_KEY not set; using in-memory pattern store")
    return InMemoryPatternStore()


@asynccontextmanager
async def _lifespan(app: FastAPI):
    if not hasattr(app.state, "store"):
        app.state.store = _build_store()
    try:
        yield
    finally:
        app.state.store.close()


app = FastAPI(title="URLGuard Python Agent", version="0.1.0", lifespan=_lifespan)
app.state.rate_limiter = RateLimiter(max_requests=max(1, int(os.getenv("URLGUARD_RATE_LIMIT", "100"))))

# For local dev, this defaults to allowing http://localhost:3000.
# In production, set URLGUARD_CORS_ORIGINS to your deployed frontend origins.
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_allow_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _store(request: Request) -> PatternStore:
    return request.app.state.store


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.post("/classify", response_model=ClassifyResponse)
def classify_endpoint(req: ClassifyRequest, request: Request, background: BackgroundTasks):
    t0 = time.perf_counter()
    timings: dict[str, int] = {}

    identifier = request.client.host if request.client else "anonymous"
    validation = validate_request(
        validation_type="scan_request",
        payload={"url": req.url},
        identifier=identifier,
        rate_limiter=request.app.state.rate_limiter,
        allowed_origins=_cors_allow_origins(),
        origin=request.headers.get("origin"),
        timestamp=req.timestamp,
    )
    if validation.rate_limited:
        raise HTTPException(
            status_code=429,
            detail="Too many scan requests. Please retry later.",
            headers={"Retry-After": "60"},
        )
    if not validation.is_valid:
        raise HTTPException(status_code=400, detail="Security validation failed.")

    url = req.url.strip()
    if not url:
        raise HTTPException(status_code=400, detail="Please provide a URL.")

    store = _store(request)
    result = classify_url(url, store)
    timings["classify"] = int((time.perf_counter() - t0) * 1000)

    warnings: list[str] = []
    if not result.domain:
        warnings.append("Could not determine a host; domain history was not used.")

    background.add_task(record_classification, store, result)

    timings["total"] = int((time.perf_counter() - t0) * 1000)
    return ClassifyResponse(
        url=result.url,
        domain=result.domain,
        features=result.features,
        assessment=result.assessment,
        fired_rules=fired_rules(result.features),
        analyzed_at=datetime.now(timezone.utc).isoformat(),
        timings_ms=timings,
        warnings=warnings,
    )


@app.get("/patterns/{domain}", response_model=DomainPattern)
def pattern_endpoint(domain: str, request: Request):
    try:
        pattern = _store(request).get(domain.strip().lower())
    except PatternStoreError as e:
        raise HTTPException(status_code=502, detail=f"Pattern store unavailable: {e}")
    if pattern is None:
        raise HTTPException(status_code=404, detail="No pattern recorded for this domain.")
    return pattern


@app.get("/history", response_model=HistoryResponse)
def history_endpoint(
    request: Request,
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    try:
        rows, total = _store(request).list_predictions(limit=limit, offset=offset)
    except PatternStoreError as e:
        logger.error("Scan history error: %s", e)
        raise HTTPException(status_code=500, detail="Internal server error")
    return {"data": rows, "total": total, "limit": limit, "offset": offset}
