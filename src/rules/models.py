from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProjectRules(BaseModel):
    slug: str = "zero-trust-analytics"
    rules_version: str = "1.0"

class IdentityRules(BaseModel):
    secret_env: str = "HASH_SECRET"
    session_window_minutes: int = Field(default=30, ge=1)
    returning_visitor_retention_days: int = Field(default=30, ge=1)
    salt_retention_days: int = Field(default=1, ge=0)

class SignatureRules(BaseModel):
    """Versioned bot/PII signature set injected into the validator."""

    version: str = "default"
    bot_patterns: list[str] = Field(
        default_factory=lambda: [
            "bot", "crawler", "spider", "scraper", "headless", "phantom",
            "selenium", "webdriver", "curl", "wget", "python-requests",
        ]
    )
    pii_patterns: dict[str, str] = Field(
        default_factory=lambda: {
            "ipv4": r"\b(?:(?:25[0-5]|2[0-4]\d|1?\d?\d)\.){3}(?:25[0-5]|2[0-4]\d|1?\d?\d)\b",
            "ipv6": r"\b(?:[0-9a-fA-F]{1,4}:){7}[0-9a-fA-F]{1,4}\b",
            "email": r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}",
            "phone": r"(?:\+\d{1,3}[\s.-]?)?\(?\d{3}\)?[\s.-]\d{3}[\s.-]\d{4}\b",
        }
    )

    @field_validator("bot_patterns")
    @classmethod
    def lowercase_patterns(cls, v: list[str]) -> list[str]:
        return [p.lower() for p in v if p]

class RateLimitRule(BaseModel):
    window_seconds: int = 60
    max_requests: int = 600

class IngestRules(BaseModel):
    allowed_kinds: list[str] = Field(
        default_factory=lambda: [
            "pageview", "custom", "error", "click", "scroll", "engagement", "heartbeat",
        ]
    )
    max_timestamp_age_seconds: int = 3600
    max_timestamp_future_seconds: int = 3600
    allow_localhost_origin: bool = False
    dedupe_ttl_seconds: int = 10
    max_batch_size: int = 50
    max_time_on_page_seconds: int = 3600
    max_session_duration_seconds: int = 7200
    engaged_time_seconds: int = 30
    engaged_scroll_percent: int = 25
    trail_cap: int = 500
    rate_limit: RateLimitRule = Field(default_factory=RateLimitRule)

class RealtimeRules(BaseModel):
    ttl_seconds: int = Field(default=30, ge=1)

class HeatmapRules(BaseModel):
    click_point_cap: int = Field(default=1000, ge=0)
    scroll_sample_cap: int = Field(default=1000, ge=0)
    band_width_percent: int = Field(default=10, ge=1, le=100)
    grid_cell_percent: int = Field(default=5, ge=1, le=100)

class FunnelRules(BaseModel):
    min_steps: int = 2
    max_steps: int = 10

class GoalRules(BaseModel):
    metrics: list[str] = Field(
        default_factory=lambda: [
            "pageviews", "visitors", "sessions", "bounce_rate",
            "avg_session_duration", "pages_per_session", "events",
        ]
    )
    periods: list[str] = Field(default_factory=lambda: ["daily", "weekly", "monthly", "yearly"])
    default_target: int = 1000

class QueryRules(BaseModel):
    max_range_days: int = 730
    fanout_workers: int = Field(default=8, ge=1)

class Rules(BaseModel):
    model_config = ConfigDict(extra="forbid")

    project: ProjectRules = Field(default_factory=ProjectRules)
    identity: IdentityRules = Field(default_factory=IdentityRules)
    signatures: SignatureRules = Field(default_factory=SignatureRules)
    ingest: IngestRules = Field(default_factory=IngestRules)
    realtime: RealtimeRules = Field(default_factory=RealtimeRules)
    heatmaps: HeatmapRules = Field(default_factory=HeatmapRules)
    funnels: FunnelRules = Field(default_factory=FunnelRules)
    goals: GoalRules = Field(default_factory=GoalRules)
    query: QueryRules = Field(default_factory=QueryRules)
