"""Application configuration loaded from environment."""

from pydantic_settings import BaseSettings, SettingsConfigDict

from oodasre.models import ActionType


class Settings(BaseSettings):
    """oodasre settings from env vars."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Decide / Act policy
    confidence_threshold: float = 0.7
    max_actions_per_incident: int = 5
    # Comma-separated direct actions the operator allows (code_fix is always allowed for escalation)
    allowed_actions: str = "rollback,restart,scale"

    # Verify phase
    max_verification_retries: int = 3
    verification_wait_seconds: float = 10.0
    frame_verification_attempts: int = 3
    frame_verification_backoff_seconds: float = 5.0

    # Escalating remediation
    use_escalating_remediation: bool = True
    escalation_confidence_threshold: float = 0.85
    escalation_wait_seconds: float = 10.0
    code_fix_wait_seconds: float = 30.0
    # Revisions younger than this are not rolled back
    rollback_min_age_seconds: float = 300.0

    # Synthetic traffic
    traffic_request_count: int = 40
    traffic_request_timeout_seconds: float = 5.0
    traffic_error_rate_threshold: float = 0.05
    # A measurement younger than this is reused by the Verify phase
    traffic_reuse_seconds: float = 15.0

    # Fix cycle (code evolution)
    require_manual_fix_approval: bool = False
    fix_wait_timeout_seconds: float = 600.0
    fix_poll_interval_seconds: float = 10.0
    fix_recently_applied_seconds: float = 300.0
    rollout_wait_seconds: float = 120.0

    # Collaborator call timeouts
    collaborator_timeout_seconds: float = 30.0
    reasoning_timeout_seconds: float = 180.0

    # Cooldowns per target (namespace/deployment)
    cooldown_default_seconds: float = 60.0
    cooldown_restart_seconds: float = 60.0
    cooldown_rollback_seconds: float = 120.0
    cooldown_scale_seconds: float = 30.0
    cooldown_max_actions_per_window: int = 5
    cooldown_window_seconds: float = 300.0

    # Rollback advisor
    max_auto_rollbacks_per_incident: int = 3
    rollback_advisor_cooldown_seconds: float = 120.0

    # Audit store (optional file persistence)
    audit_data_dir: str = ""

    # Target system defaults (demo dashboard)
    service_url: str = "http://localhost:3000"

    # AWS (Amazon Nova / Bedrock reasoning, Lambda executor)
    aws_region: str = "us-east-1"
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    nova_model_id: str = "us.amazon.nova-2-lite-v1:0"
    bedrock_read_timeout_seconds: int = 300
    # Set true to call Bedrock Nova for reasoning; false uses stub (demo/CI without AWS)
    reasoning_use_bedrock: bool = False
    # Set true to execute actions against Lambda; false uses the demo service executor
    use_aws_integration: bool = False
    lambda_alias_name: str = "live"

    # Slack
    slack_bot_token: str = ""
    slack_channel_id: str = ""

    @property
    def allowed_action_types(self) -> list[ActionType]:
        out: list[ActionType] = []
        for name in self.allowed_actions.split(","):
            name = name.strip().lower()
            if not name:
                continue
            try:
                out.append(ActionType(name))
            except ValueError:
                continue
        return out


def get_settings() -> Settings:
    """Return loaded settings from environment (and .env if present)."""
    return Settings()
