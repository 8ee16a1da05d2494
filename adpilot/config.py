"""Global configuration — loaded from environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings


class PilotSettings(BaseSettings):
    anthropic_api_key: str = ""
    default_model: str = "claude-sonnet-4-20250514"
    llm_timeout_seconds: float = 60.0
    workspace_dir: Path = Path(".adpilot")
    db_path: Path = Path(".adpilot/adpilot.db")
    max_concurrent_entities: int = 16
    log_level: str = "INFO"

    # Metrics sources, highest priority first
    metrics_source_urls: str = ""  # Comma-separated base URLs
    metrics_timeout_seconds: float = 30.0
    account_ids: str = ""  # Comma-separated; empty = every account the source knows
    reporting_utc_offset_hours: int = 0

    # Platform execution
    platform_base_url: str = ""
    platform_token: str = ""
    platform_timeout_seconds: float = 30.0
    dry_run: bool = False  # Log platform calls instead of sending them

    # Notifications
    notify_webhook_url: str = ""
    notify_timeout_seconds: float = 10.0

    # Action lifecycle
    cooldown_hours: int = 24
    recent_operation_hours: int = 72
    approval_ttl_hours: int = 24
    execute_max_attempts: int = 3
    execute_backoff_seconds: float = 30.0  # multiplied by attempt number

    # Reflection window (hours after execution)
    reflection_min_hours: int = 2
    reflection_max_hours: int = 24

    # Schedules
    cycle_interval_minutes: int = 60
    audit_interval_hours: int = 2
    evolution_interval_hours: int = 168  # weekly
    evolution_days_lookback: int = 7
    decay_interval_hours: int = 24

    model_config = {"env_prefix": "ADPILOT_"}

    def source_urls(self) -> list[str]:
        return [u.strip() for u in self.metrics_source_urls.split(",") if u.strip()]

    def accounts(self) -> list[str]:
        return [a.strip() for a in self.account_ids.split(",") if a.strip()]


settings = PilotSettings()
