# backend/telemed_booking/config.py

from pathlib import Path
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]  # repository root


class RegionMapping(BaseModel):
    """Practice/provider/resource ids serving one region (state code)."""
    practice_id: str
    default_provider_id: str
    resource_id: str | None = None
    provider_name: str | None = None


class Settings(BaseSettings):
    database_url: str = "sqlite:///./telemed_booking.db"

    # ===== Cache backend =====
    redis_url: str = "redis://localhost:6379/0"
    redis_enabled: bool = True
    redis_socket_timeout: float = 2.0
    cache_prefix: str = "tmb"
    cache_timeout: float = 2.0
    availability_cache_ttl: int = 60   # filtered lists change often
    overlay_ttl: int = 120             # how long the EHR may lag behind a write

    # ===== Practice-management system =====
    pm_base_url: str = "http://localhost:9000"
    pm_api_key: str | None = None
    pm_timeout: float = 10.0
    external_retry_attempts: int = 3
    external_retry_base_delay: float = 0.2

    # ===== Conflict resolution =====
    shift_increment_minutes: int = 15
    shift_max_attempts: int = 24       # 6 hours of 15 minute shifts

    # ===== API =====
    admin_api_key: str | None = None
    log_level: str = "INFO"

    region_mapping: dict[str, RegionMapping] = {}

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        extra="ignore",
    )

    @property
    def resolved_database_url(self) -> str:
        url = self.database_url
        if url.startswith("sqlite:///./"):
            # relative sqlite path → absolute, anchored at the repository root
            relative_path = url.replace("sqlite:///./", "")
            absolute_path = BASE_DIR / relative_path
            return f"sqlite:///{absolute_path}"
        return url

    def region(self, code: str) -> RegionMapping | None:
        return self.region_mapping.get(code.upper())


settings = Settings()
