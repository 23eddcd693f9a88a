"""Dependency providers and settings management."""

from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Any, Callable, Optional

from fastapi import Depends, Header, HTTPException, Query, status
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.orm import Session

from .database import get_db
from .errors import AnalyticsError, FunnelNotFoundError, InvalidTimeRangeError
from .models import Funnel
from .services.store_reader import FunnelStore
from .services.time_range import TimeWindow, resolve_time_range


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"
    ENVIRONMENT: str = "development"
    SENTRY_DSN: Optional[str] = None

    # Dashboard fan-out: one thread (and one DB connection) per analysis
    ANALYTICS_MAX_WORKERS: int = 6
    # Days since last visit after which a visitor counts as churned
    LIFECYCLE_CHURN_DAYS: int = 30

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


@dataclass(frozen=True)
class TenantScope:
    """Organization/subaccount the caller has already been authorized for."""
    organization_id: str
    subaccount_id: Optional[str] = None


def get_tenant_scope(
    x_organization_id: Optional[str] = Header(default=None),
    x_subaccount_id: Optional[str] = Header(default=None),
) -> TenantScope:
    """Resolve the tenant scope from the headers set by the upstream gateway.

    Authentication happens upstream; this only refuses requests that arrive
    without an organization, since every funnel lookup is scoped by it.
    """
    if not x_organization_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing organization scope")
    return TenantScope(organization_id=x_organization_id, subaccount_id=x_subaccount_id or None)


def get_time_window(
    time_range: Optional[str] = Query(default=None, description="24h, 7d, 30d, 90d or all"),
    start_date: Optional[datetime] = Query(default=None),
    end_date: Optional[datetime] = Query(default=None),
) -> TimeWindow:
    """Resolve the request's time range query params into a TimeWindow."""
    try:
        return resolve_time_range(time_range, start_date, end_date)
    except InvalidTimeRangeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)


def get_max_workers(settings: Settings = Depends(get_settings)) -> int:
    return max(1, settings.ANALYTICS_MAX_WORKERS)


def get_funnel(
    funnel_id: str,
    scope: TenantScope = Depends(get_tenant_scope),
    db: Session = Depends(get_db),
) -> Funnel:
    """Resolve the path's funnel inside the caller's scope, 404 otherwise."""
    try:
        return FunnelStore(db).get_funnel(funnel_id, scope)
    except FunnelNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


def run_analysis(handler: Callable[..., Any], *args, **kwargs) -> Any:
    """Call an analysis handler, translating service errors into HTTP errors.

    AnalyticsError subclasses carry their own status code; ValueError means
    a bad analysis parameter (unknown interval, grouping, stage...).
    """
    try:
        return handler(*args, **kwargs)
    except AnalyticsError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
