"""
Runtime configuration, read from environment variables once at import.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional


LOG_LEVELS = {
    "production": "INFO",
    "staging": "INFO",
    "development": "DEBUG",
    "test": "WARNING",
}


def _origins(raw: str) -> List[str]:
    return [o.strip() for o in raw.split(",") if o.strip()] or ["*"]


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    database_url: Optional[str] = None
    database_name: Optional[str] = None
    port: int = 8000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "DEBUG"
    log_file: Optional[str] = None
    price_tolerance: float = 0.01
    low_stock_threshold: int = 5
    order_number_width: int = 3

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def load_settings() -> Settings:
    environment = os.getenv("ENVIRONMENT", "development").lower()
    return Settings(
        environment=environment,
        database_url=os.getenv("DATABASE_URL"),
        database_name=os.getenv("DATABASE_NAME"),
        port=int(os.getenv("PORT", 8000)),
        cors_origins=_origins(os.getenv("CORS_ORIGINS", "*")),
        log_level=os.getenv("LOG_LEVEL", LOG_LEVELS.get(environment, "INFO")),
        log_file=os.getenv("LOG_FILE"),
        price_tolerance=float(os.getenv("PRICE_TOLERANCE", 0.01)),
        low_stock_threshold=int(os.getenv("LOW_STOCK_THRESHOLD", 5)),
        order_number_width=int(os.getenv("ORDER_NUMBER_WIDTH", 3)),
    )


settings = load_settings()
