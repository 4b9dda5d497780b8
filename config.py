import logging
import os
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

DEFAULT_CATEGORIES = (
    "Food",
    "Transportation",
    "Entertainment",
    "Shopping",
    "Bills",
    "Healthcare",
)

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


class Settings:
    def __init__(
        self,
        data_dir: Path,
        database_url: str,
        timezone: Optional[str],
        log_level: str,
        currency_symbol: str,
        default_categories: tuple[str, ...],
    ) -> None:
        self.data_dir = data_dir
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.currency_symbol = currency_symbol
        self.default_categories = default_categories


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("SPENDING_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _parse_categories(raw: Optional[str]) -> tuple[str, ...]:
    if not raw:
        return DEFAULT_CATEGORIES
    names = tuple(name.strip() for name in raw.split(",") if name.strip())
    return names or DEFAULT_CATEGORIES


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "spending.db"
    database_url = os.getenv("SPENDING_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("SPENDING_TIMEZONE") or None
    log_level = os.getenv("SPENDING_LOG_LEVEL", "INFO").strip().upper()
    currency_symbol = os.getenv("SPENDING_CURRENCY_SYMBOL", "€")
    default_categories = _parse_categories(os.getenv("SPENDING_DEFAULT_CATEGORIES"))
    return Settings(
        data_dir=data_dir,
        database_url=database_url,
        timezone=timezone,
        log_level=log_level,
        currency_symbol=currency_symbol,
        default_categories=default_categories,
    )


def configure_logging(level: Optional[str] = None) -> None:
    name = (level or get_settings().log_level).upper()
    numeric = getattr(logging, name, None)
    if not isinstance(numeric, int):
        numeric = logging.INFO
    logging.basicConfig(level=numeric, format=LOG_FORMAT)


def local_now() -> datetime:
    """Current wall-clock time, without tzinfo.

    Uses ``SPENDING_TIMEZONE`` when set, otherwise the host's local zone.
    """
    timezone = get_settings().timezone
    if timezone is None:
        return datetime.now()
    return datetime.now(ZoneInfo(timezone)).replace(tzinfo=None)
