"""Configuration management using Pydantic settings."""

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from emberline.config import EngineConfig
from emberline.geo.reference import GeoReference


class Settings(BaseSettings):
    """Application settings loaded from EMBERLINE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="EMBERLINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "EMBERLINE"
    debug: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Scoring weights (vegetation, invasive grass, slope) -- must sum to 1.0
    alpha: float = 0.35
    beta: float = 0.45
    gamma: float = 0.20
    strategy: str = "weighted_sum"

    # Tick behavior
    tick_duration_h: float = 1.0
    tick_interval_s: float = 0.0       # > 0 starts the background tick loop
    deficit_accrual_mm_per_tick: float = 2.0
    cell_area_m2: float = 100.0
    min_service_interval_ticks: Optional[int] = None
    reset_recovery_on_service: bool = False
    require_cell_owner: bool = False
    max_tick_retries: int = 3
    index_workers: int = 1

    # Feeds loaded at startup (all optional)
    cells_path: Optional[Path] = None
    zones_path: Optional[Path] = None
    assets_path: Optional[Path] = None
    events_path: Optional[Path] = None
    snapshot_path: Optional[Path] = None   # restore from a saved snapshot instead

    # Geo reference for feeds given in lat/lng.  (0, 0) local = (lat, lng).
    map_center_lat: float = 32.2226
    map_center_lng: float = -110.9747

    def engine_config(self) -> EngineConfig:
        """Build the validated engine configuration (raises ConfigurationError)."""
        return EngineConfig(
            alpha=self.alpha,
            beta=self.beta,
            gamma=self.gamma,
            strategy=self.strategy,
            tick_duration_h=self.tick_duration_h,
            deficit_accrual_mm_per_tick=self.deficit_accrual_mm_per_tick,
            cell_area_m2=self.cell_area_m2,
            min_service_interval_ticks=self.min_service_interval_ticks,
            reset_recovery_on_service=self.reset_recovery_on_service,
            require_cell_owner=self.require_cell_owner,
            max_tick_retries=self.max_tick_retries,
            index_workers=self.index_workers,
        )

    def geo_reference(self) -> GeoReference:
        return GeoReference(lat=self.map_center_lat, lng=self.map_center_lng)


settings = Settings()
