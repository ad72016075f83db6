"""
Configuration objects injected into the KPI dispatcher and engine.

Values are read from the environment once at process start (see
``AnalyticsConfig.from_env``); the computation code only ever sees the
resulting objects.
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional, Tuple

from pydantic import BaseModel, field_validator

from .bins import validate_bins
from .errors import KpiInputError

logger = logging.getLogger(__name__)


class AnalyticsConfig(BaseModel):
    timezone: str = "America/New_York"
    """Operating timezone used for every day/week/month bucket."""

    cohort_labels: Tuple[str, ...] = ("A", "B", "C", "D", "none")
    """Beta roster cohort labels accepted as cohort selectors."""

    default_query_bins: Tuple[float, ...] = (0, 1, 5, 10, 20, 50)
    default_token_bins: Tuple[float, ...] = (0, 1000, 5000, 10000, 50000, 100000)

    retention_active_days: int = 30
    """A user counts as retained when their last query is this recent."""

    conversion_max_gap_days: int = 14
    """Largest allowed gap between two active days of a converted user."""

    source_interaction_kinds: Tuple[str, ...] = ("opened_source", "clicked_intext_link")
    pro_product_markers: Tuple[str, ...] = ("pro", "Pro")

    @field_validator("default_query_bins", "default_token_bins")
    @classmethod
    def _validate_bins(cls, value: Tuple[float, ...]) -> Tuple[float, ...]:
        try:
            validate_bins(value)
        except KpiInputError as exc:
            raise ValueError(str(exc)) from exc
        return value

    @classmethod
    def from_env(cls) -> "AnalyticsConfig":
        defaults = cls()
        return cls(
            timezone=os.getenv("KPI_TIMEZONE", defaults.timezone),
            cohort_labels=_env_list("KPI_COHORT_LABELS") or defaults.cohort_labels,
            default_query_bins=_env_floats("KPI_QUERY_BINS") or defaults.default_query_bins,
            default_token_bins=_env_floats("KPI_TOKEN_BINS") or defaults.default_token_bins,
            retention_active_days=_env_int("KPI_RETENTION_ACTIVE_DAYS", defaults.retention_active_days),
            conversion_max_gap_days=_env_int("KPI_CONVERSION_MAX_GAP_DAYS", defaults.conversion_max_gap_days),
        )


class BillingConfig(BaseModel):
    enable: bool = False
    api_key: Optional[str] = None
    page_limit: int = 100

    @classmethod
    def from_env(cls) -> "BillingConfig":
        api_key = os.getenv("STRIPE_SECRET_KEY")
        return cls(
            enable=_env_bool("STRIPE_ENABLE", bool(api_key)),
            api_key=api_key,
            page_limit=_env_int("STRIPE_PAGE_LIMIT", 100),
        )


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %s", name, raw, default)
        return default


def _env_list(name: str) -> Tuple[str, ...]:
    raw = os.getenv(name) or ""
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _env_floats(name: str) -> Tuple[float, ...]:
    values: List[float] = []
    for part in _env_list(name):
        try:
            values.append(float(part))
        except ValueError:
            logger.warning("Ignoring %s: %r is not a number, using the default bins", name, part)
            return ()
    return tuple(values)
