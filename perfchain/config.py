from pathlib import Path
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

# Load .env from repo root for local development and scripts.
ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(dotenv_path=ENV_PATH)

class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=True, populate_by_name=True)
    db_path: str = Field(default="./data/perfchain.db", alias="DB_PATH")
    local_tz: str = Field(default="America/New_York", alias="LOCAL_TZ")
    default_currency: str = Field(default="USD", alias="DEFAULT_CURRENCY")
    twr_tolerance_pp: float = Field(default=0.01, alias="TWR_TOLERANCE_PP")
    mwr_tolerance_multiplier: float = Field(default=5.0, alias="MWR_TOLERANCE_MULTIPLIER")
    chart_tolerance_multiplier: float = Field(default=10.0, alias="CHART_TOLERANCE_MULTIPLIER")
    coherence_rel_tolerance: float = Field(default=1e-4, alias="COHERENCE_REL_TOLERANCE")
    extreme_return_max_pct: float = Field(default=500.0, alias="EXTREME_RETURN_MAX_PCT")
    extreme_return_min_pct: float = Field(default=-90.0, alias="EXTREME_RETURN_MIN_PCT")
    value_jump_warn_pct: float = Field(default=50.0, alias="VALUE_JUMP_WARN_PCT")
    consolidation_lock_ttl_seconds: int = Field(default=3600, alias="CONSOLIDATION_LOCK_TTL_SECONDS")
    parity_sample_size: int = Field(default=5, alias="PARITY_SAMPLE_SIZE")

settings = Settings()
