"""
Runtime configuration for the Car Rental API.

Values are read from the environment once at startup and passed around
inside an AppContext instead of living in module globals.
"""

import os
from typing import List, Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    database_url: Optional[str] = Field(None, description="MongoDB connection string")
    database_name: Optional[str] = Field(None, description="MongoDB database name")
    stripe_secret: Optional[str] = Field(None, description="Stripe secret key")
    frontend_url: str = "http://localhost:3000"
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    processor_timeout: float = Field(10.0, gt=0, description="Seconds before a Stripe call is abandoned")
    log_level: str = "INFO"
    port: int = 8000

    model_config = {"frozen": True}

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME"),
            stripe_secret=os.getenv("STRIPE_SECRET"),
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            processor_timeout=float(os.getenv("PROCESSOR_TIMEOUT", 10)),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            port=int(os.getenv("PORT", 8000)),
        )

    def stripe_available(self) -> bool:
        return bool(self.stripe_secret)
