"""CRM sync configuration via pydantic-settings."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings


class SyncSettings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///crm_sync.db"
    echo_sql: bool = False
    app_title: str = "CRM Sync"
    log_level: str = "INFO"

    # Bearer tokens accepted by the API, as comma-separated user_id:token pairs.
    api_tokens: str = ""

    # Teamleader Focus OAuth app + API
    teamleader_client_id: str = ""
    teamleader_client_secret: str = ""
    teamleader_api_url: str = "https://api.focus.teamleader.eu"
    teamleader_auth_url: str = "https://focus.teamleader.eu/oauth2/authorize"
    teamleader_token_url: str = "https://focus.teamleader.eu/oauth2/access_token"
    teamleader_redirect_uri: str = "http://localhost:8030/oauth/callback"
    http_timeout_seconds: float = 30.0
    # OAuth state values older than this are rejected on code exchange.
    oauth_state_ttl_seconds: int = 600

    # Refresh this many seconds before the recorded expiry.
    token_refresh_leeway_seconds: int = 60

    # Pagination
    sync_page_delay_seconds: float = 0.1
    sync_batch_size: int = 100
    sync_max_pages: int = 15
    # smart_sync pulls records changed since the last completed run, or
    # within this window when there is none.
    smart_sync_lookback_hours: int = 24
    full_import_batch_size: int = 250
    full_import_max_pages: int = 50
    # Teamleader rejects page sizes above 250.
    max_page_size: int = 250

    # Scheduled (cron) sync across all active connections
    auto_sync_batch_size: int = 200
    auto_sync_max_pages: int = 25
    auto_sync_user_delay_seconds: float = 1.0

    # A running SyncRun older than this is treated as crashed.
    sync_run_stale_after_seconds: int = 3600

    model_config = {"env_prefix": "CRM_SYNC_", "env_file": ".env", "extra": "ignore"}

    @property
    def base_dir(self) -> Path:
        return Path(__file__).resolve().parent

    @property
    def alembic_ini_path(self) -> Path:
        return self.base_dir / "alembic.ini"

    @property
    def teamleader_configured(self) -> bool:
        return bool(self.teamleader_client_id and self.teamleader_client_secret)

    @property
    def api_tokens_map(self) -> dict[str, str]:
        """Parse comma-separated user_id:token pairs into {token: user_id}."""
        mapping: dict[str, str] = {}
        if not self.api_tokens.strip():
            return mapping

        for item in self.api_tokens.split(","):
            pair = item.strip()
            if not pair or ":" not in pair:
                continue
            user_id, token = pair.split(":", 1)
            user_id = user_id.strip()
            token = token.strip()
            if user_id and token:
                mapping[token] = user_id
        return mapping


settings = SyncSettings()
