import logging
import math
import re
from datetime import date
from functools import lru_cache, partial
from typing import Any, Awaitable, Callable

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from stickerlens.config import Settings, load_settings
from stickerlens.database import Base, SessionLocal, engine, get_db
from stickerlens.errors import UpstreamDataError
from stickerlens.orchestrator.valuation_orchestrator import ValuationService
from stickerlens.repositories import splits_repo
from stickerlens.services import analyst_growth
from stickerlens.services.rule1 import GrowthBasis, Rule1Knobs

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

TICKER_RE = re.compile(r"^[A-Z.\-]{1,10}$")
MAX_YEARS = 50

app = FastAPI(title="StickerLens Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Base.metadata.create_all(bind=engine)

with SessionLocal() as _db:
    splits_repo.seed_default_splits(_db)


# ---------------------------------------------------------------------------
# Dependencies (overridden in tests)
# ---------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


@lru_cache(maxsize=1)
def get_valuation_service() -> ValuationService:
    return ValuationService(get_settings())


GrowthEstimator = Callable[[str, int], Awaitable[analyst_growth.AnalystGrowthEstimate]]


def get_growth_estimator(settings: Settings = Depends(get_settings)) -> GrowthEstimator:
    return partial(analyst_growth.estimate_analyst_growth, finnhub_api_key=settings.finnhub_api_key)


# ---------------------------------------------------------------------------
# Query parsing
# ---------------------------------------------------------------------------

def clean_ticker(raw: str | None) -> str:
    ticker = (raw or "").strip().upper()
    if not TICKER_RE.match(ticker):
        raise HTTPException(status_code=400, detail=f"Invalid ticker: {raw!r}")
    return ticker


def num_param(raw: str | None, default: float) -> float:
    """Parse a numeric query value; anything non-finite falls back to `default`."""
    if raw is None:
        return default
    try:
        n = float(raw)
    except ValueError:
        return default
    return n if math.isfinite(n) else default


def rate_param(raw: str | None, default: float) -> float:
    n = num_param(raw, default)
    return n if n > -1 else default


def knobs_from_query(
    settings: Settings,
    years: str | None,
    growth: str | None,
    desired_return: str | None,
    mos: str | None,
    growth_basis: str | None,
) -> Rule1Knobs:
    """
    Build Rule #1 knobs from raw query values.

    years is rounded and clamped to [1, MAX_YEARS]. Growth and return rates at
    or below -100 % cannot compound and fall back to their defaults.
    """
    default_basis = GrowthBasis.parse(settings.default_growth_basis)
    return Rule1Knobs(
        years=min(MAX_YEARS, max(1, round(num_param(years, settings.default_years)))),
        analyst_growth=rate_param(growth, settings.default_analyst_growth),
        desired_return=rate_param(desired_return, settings.default_desired_return),
        margin_of_safety_percent=num_param(mos, settings.default_mos_percent),
        growth_basis=GrowthBasis.parse(growth_basis, default_basis) if growth_basis else default_basis,
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.get("/health")
def healthcheck():
    return {"status": "ok"}


@app.get("/financials")
async def get_financials(
    ticker: str | None = None,
    years: str | None = None,
    growth: str | None = None,
    desired_return: str | None = Query(default=None, alias="return"),
    mos: str | None = None,
    growth_basis: str | None = Query(default=None, alias="growthBasis"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    service: ValuationService = Depends(get_valuation_service),
):
    """
    Annual fundamentals, derived metrics and a Rule #1 valuation for one ticker.

    Defaults: years=10, growth=0.10, return=0.20, mos=40, growthBasis=bvps_5y.
    Upstream retrieval failures answer 502.
    """
    symbol = clean_ticker(ticker)
    knobs = knobs_from_query(settings, years, growth, desired_return, mos, growth_basis)
    try:
        return await service.value_ticker(symbol, knobs, db)
    except UpstreamDataError as exc:
        logger.error("[API] /financials %s: %s", symbol, exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.get("/analyst-growth")
async def get_analyst_growth(
    ticker: str | None = None,
    years: str | None = None,
    estimate: GrowthEstimator = Depends(get_growth_estimator),
):
    symbol = clean_ticker(ticker)
    n_years = analyst_growth.clamp_estimate_years(years)
    result = await estimate(symbol, n_years)
    return result.to_dict()


# ---------------------------------------------------------------------------
# Split registry
# ---------------------------------------------------------------------------

class SplitIn(BaseModel):
    effective_date: date
    ratio: float = Field(gt=0)
    source: str = "manual"


class SplitsResponse(BaseModel):
    ticker: str
    splits: list[dict[str, Any]]


@app.get("/splits/{ticker}", response_model=SplitsResponse)
def get_splits(ticker: str, db: Session = Depends(get_db)):
    symbol = clean_ticker(ticker)
    return SplitsResponse(ticker=symbol, splits=splits_repo.list_splits(db, symbol))


@app.post("/splits/{ticker}", response_model=SplitsResponse)
def add_split(ticker: str, body: SplitIn, db: Session = Depends(get_db)):
    symbol = clean_ticker(ticker)
    written = splits_repo.upsert_splits(db, [{
        "ticker": symbol,
        "effective_date": body.effective_date,
        "ratio": body.ratio,
        "source": body.source,
    }])
    if not written:
        raise HTTPException(status_code=500, detail=f"Could not save split for {symbol}")
    return SplitsResponse(ticker=symbol, splits=splits_repo.list_splits(db, symbol))


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

@app.delete("/cache/{ticker}")
def invalidate_cache(ticker: str, service: ValuationService = Depends(get_valuation_service)):
    symbol = clean_ticker(ticker)
    return {"ok": True, "ticker": symbol, "invalidated": service.invalidate(symbol)}
