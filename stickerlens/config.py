import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

_PACKAGE_DIR = Path(__file__).resolve().parent
_DEFAULT_DB_URL = f"sqlite:///{_PACKAGE_DIR / 'stickerlens.db'}"

DEFAULT_SEC_USER_AGENT = "StickerLens valuation app (admin@example.com)"


@dataclass(frozen=True)
class Settings:
    sec_user_agent: str
    finnhub_api_key: str
    database_url: str
    cache_max_symbols: int
    annual_lookback: int
    default_years: int = 10
    default_analyst_growth: float = 0.10
    default_desired_return: float = 0.20
    default_mos_percent: float = 40.0
    default_growth_basis: str = "bvps_5y"


def _int_env(name: str, default: int, lo: int, hi: int) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        value = default
    return max(lo, min(value, hi))


def load_settings(env_file: Path | None = None) -> Settings:
    """Read settings from the environment, loading the repo-root .env first."""
    load_dotenv(env_file or _PACKAGE_DIR.parent / ".env", override=False)
    return Settings(
        sec_user_agent=os.getenv("SEC_USER_AGENT", "").strip() or DEFAULT_SEC_USER_AGENT,
        finnhub_api_key=os.getenv("FINNHUB_API_KEY", "").strip(),
        database_url=os.getenv("STICKERLENS_DATABASE_URL", "").strip() or _DEFAULT_DB_URL,
        cache_max_symbols=_int_env("STICKERLENS_CACHE_MAX_SYMBOLS", 64, 1, 4096),
        annual_lookback=_int_env("STICKERLENS_ANNUAL_LOOKBACK", 10, 1, 40),
    )
