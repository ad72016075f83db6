# configuration for the Pendium admin backend

import os
from typing import Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from pendium_backend.kpi.config import AnalyticsConfig, BillingConfig
from pendium_backend.kpi.repository import RepositoryConfig


class AdminConfig(BaseModel):
    analytics: AnalyticsConfig = Field(default_factory=AnalyticsConfig)
    """Timezone, cohort labels and KPI defaults."""

    repository: RepositoryConfig = Field(default_factory=RepositoryConfig)
    """Where chat logs, users and the beta roster are read from."""

    billing: BillingConfig = Field(default_factory=BillingConfig)

    cors_origins: Tuple[str, ...] = ("*",)
    """Origins allowed to call the admin API from a browser."""


def load_admin_config(dotenv_path: str = ".env") -> AdminConfig:
    """Build the process configuration from the environment (and ``.env``)."""
    load_dotenv(dotenv_path)
    origins = tuple(part.strip() for part in os.getenv("ADMIN_CORS_ORIGINS", "*").split(",") if part.strip())
    return AdminConfig(
        analytics=AnalyticsConfig.from_env(),
        repository=RepositoryConfig.from_env(),
        billing=BillingConfig.from_env(),
        cors_origins=origins or ("*",),
    )
