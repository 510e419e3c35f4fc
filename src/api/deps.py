import logging
import os
from datetime import date
from functools import lru_cache
from pathlib import Path

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.adapters.clock import SystemClock
from src.adapters.kv_sqlite import SQLiteKeyValueStore
from src.adapters.log_notifier import LoggingGoalNotifier
from src.adapters.site_directory import KVSiteDirectory
from src.api.auth_utils import token_user_id
from src.api.errors import raise_for_errors
from src.app_shell.rate_limit import RateLimiter
from src.components.analytics import (
    AnalyticsIngestionService,
    IngestionConfig,
    create_analytics_ingestion_service,
)
from src.components.funnels import FunnelConfig
from src.components.goals import GoalConfig
from src.components.heatmaps import HeatmapConfig, HeatmapSink
from src.components.realtime import RealtimeSink
from src.components.stats import ResolvePeriodInput, StatsConfig, run_resolve_period
from src.core.errors import AuthenticationError, OwnershipError
from src.core.ports.kv import KeyValueStorePort
from src.core.ports.sites import SiteRecord
from src.core.services.analytics_classify import ClassifierConfig, EventClassifier
from src.core.services.analytics_identity import IdentityConfig, IdentityService
from src.rules.loader import load_rules
from src.rules.models import Rules

logger = logging.getLogger(__name__)


# --- Settings ---
class Settings:
    def __init__(self) -> None:
        self.base_dir = Path(os.getcwd())
        self.data_dir = Path(os.environ.get("ZTA_DATA_DIR", "./data"))
        self.db_path = str(self.data_dir / "analytics.db")
        self.rules_path = Path(os.environ.get("ZTA_RULES_PATH", str(self.base_dir / "rules.yaml")))
        self.environment = os.environ.get("ZTA_ENV", "production")
        self.trusted_proxies = tuple(
            p.strip() for p in os.environ.get("ZTA_TRUSTED_PROXIES", "").split(",") if p.strip()
        )

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def get_trusted_proxies(settings: Settings = Depends(get_settings)) -> tuple[str, ...]:
    """Proxy addresses or CIDRs whose X-Forwarded-For is believed."""
    return settings.trusted_proxies


# --- Rules ---
@lru_cache
def get_rules() -> Rules:
    return load_rules(get_settings().rules_path)


# --- Adapters ---
_store_instance: SQLiteKeyValueStore | None = None


def get_store() -> KeyValueStorePort:
    """Get key-value store singleton."""
    global _store_instance
    if _store_instance is None:
        settings = get_settings()
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        _store_instance = SQLiteKeyValueStore(settings.db_path)
    return _store_instance


# Time adapter for deterministic time operations
_clock_instance: SystemClock | None = None


def get_clock() -> SystemClock:
    """Get clock singleton."""
    global _clock_instance
    if _clock_instance is None:
        _clock_instance = SystemClock()
    return _clock_instance


_rate_limiter_instance: RateLimiter | None = None


def get_rate_limiter(rules: Rules = Depends(get_rules)) -> RateLimiter:
    """Get rate limiter singleton (history is per process)."""
    global _rate_limiter_instance
    if _rate_limiter_instance is None:
        _rate_limiter_instance = RateLimiter(rules.ingest.rate_limit)
    return _rate_limiter_instance


_notifier_instance: LoggingGoalNotifier | None = None


def get_notifier() -> LoggingGoalNotifier:
    """Get goal notifier singleton."""
    global _notifier_instance
    if _notifier_instance is None:
        _notifier_instance = LoggingGoalNotifier()
    return _notifier_instance


def get_site_directory(store: KeyValueStorePort = Depends(get_store)) -> KVSiteDirectory:
    return KVSiteDirectory(store)


# --- Services ---
def get_identity_service(
    store: KeyValueStorePort = Depends(get_store),
    rules: Rules = Depends(get_rules),
) -> IdentityService:
    pepper = os.environ.get(rules.identity.secret_env)
    if not pepper:
        logger.warning("%s is not set; using the development pepper", rules.identity.secret_env)
        pepper = IdentityConfig().pepper
    return IdentityService(store, IdentityConfig.from_rules(rules.identity, pepper))


def get_classifier(
    rules: Rules = Depends(get_rules),
    settings: Settings = Depends(get_settings),
) -> EventClassifier:
    allow_localhost = True if settings.is_development else None
    return EventClassifier(ClassifierConfig.from_rules(rules, allow_localhost=allow_localhost))


def get_ingestion_service(
    store: KeyValueStorePort = Depends(get_store),
    sites: KVSiteDirectory = Depends(get_site_directory),
    classifier: EventClassifier = Depends(get_classifier),
    identity: IdentityService = Depends(get_identity_service),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    clock: SystemClock = Depends(get_clock),
    rules: Rules = Depends(get_rules),
) -> AnalyticsIngestionService:
    """Get analytics ingestion service with realtime and heatmap sinks."""
    return create_analytics_ingestion_service(
        store=store,
        sites=sites,
        classifier=classifier,
        identity=identity,
        rate_limiter=rate_limiter,
        time_port=clock,
        config=IngestionConfig.from_rules(rules),
        sinks=[
            RealtimeSink(store, rules.realtime.ttl_seconds),
            HeatmapSink(store, HeatmapConfig.from_rules(rules.heatmaps)),
        ],
    )


def get_stats_config(rules: Rules = Depends(get_rules)) -> StatsConfig:
    return StatsConfig.from_rules(rules)


def get_heatmap_config(rules: Rules = Depends(get_rules)) -> HeatmapConfig:
    return HeatmapConfig.from_rules(rules.heatmaps)


def get_funnel_config(rules: Rules = Depends(get_rules)) -> FunnelConfig:
    return FunnelConfig.from_rules(rules.funnels)


def get_goal_config(rules: Rules = Depends(get_rules)) -> GoalConfig:
    return GoalConfig.from_rules(rules)


# --- Auth ---
bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """Resolve the caller's user id from a bearer JWT."""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Not authenticated")

    user_id = token_user_id(credentials.credentials)
    if user_id is None:
        raise AuthenticationError("Invalid token")
    return user_id


def require_site_owner(site_id: str, user_id: str, sites: KVSiteDirectory) -> SiteRecord:
    """
    Return the site if the caller owns it.

    Unknown and foreign sites raise the same OwnershipError.
    """
    site = sites.get_site(site_id)
    if site is None or site.owner_id != user_id:
        raise OwnershipError()
    return site


# --- Date Ranges ---
def resolve_date_range(
    period: str | None,
    start_date: date | None,
    end_date: date | None,
    today: date,
    config: StatsConfig,
    default_period: str = "7d",
) -> tuple[date, date]:
    """
    Resolve query parameters to an inclusive date window.

    Explicit start and end dates win over the period token.
    """
    if period is None and start_date is not None and end_date is not None:
        period = "custom"
    out = run_resolve_period(
        ResolvePeriodInput(period=period or default_period, today=today, start=start_date, end=end_date),
        config=config,
    )
    raise_for_errors(out.errors)
    assert out.start is not None and out.end is not None
    return out.start, out.end
