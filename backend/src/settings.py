import os
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict

DEFAULT_CORS_ORIGINS = (
    "http://localhost:5173",
    "https://www.warcraftlogs.com",
)


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    log_level: str = "INFO"
    sentry_dsn: Optional[str] = None
    sentry_traces_sample_rate: float = 0.05
    cors_origins: Tuple[str, ...] = DEFAULT_CORS_ORIGINS
    analysis_max_workers: Optional[int] = None

    @property
    def sentry_enabled(self):
        return bool(self.sentry_dsn)

    @classmethod
    def from_env(cls, environ=None):
        environ = os.environ if environ is None else environ
        values = {}

        if environ.get("LOG_LEVEL"):
            values["log_level"] = environ["LOG_LEVEL"].upper()
        if environ.get("SENTRY_DSN"):
            values["sentry_dsn"] = environ["SENTRY_DSN"]
        if environ.get("SENTRY_TRACES_SAMPLE_RATE"):
            values["sentry_traces_sample_rate"] = environ["SENTRY_TRACES_SAMPLE_RATE"]
        if environ.get("CORS_ORIGINS"):
            values["cors_origins"] = tuple(
                origin.strip()
                for origin in environ["CORS_ORIGINS"].split(",")
                if origin.strip()
            )
        if environ.get("ANALYSIS_MAX_WORKERS"):
            values["analysis_max_workers"] = environ["ANALYSIS_MAX_WORKERS"]

        return cls(**values)
