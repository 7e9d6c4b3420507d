from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Release Control API"
    releases_dir: str = ".release-control/releases"
    persist_releases: bool = True
    ledger_database_url: str = "sqlite+pysqlite:///./.release-control/ledger.db"
    release_config_path: str | None = None
    preview_domain: str = "localhost"
    webhook_dedup_window_seconds: float = 60.0
    github_webhook_secret: str | None = None
    gitlab_webhook_token: str | None = None
    auto_advance_releases: bool = True
    release_gate_check_timeout_seconds: int = 900
    preview_deploy_command: str | None = None
    preview_deploy_timeout_seconds: int = 600
    slack_webhook_url: str | None = None
    slack_timeout_seconds: float = 10.0
    cors_allowed_origins_csv: str = (
        "http://127.0.0.1:5173,http://localhost:5173,http://127.0.0.1:8088,http://localhost:8088"
    )

    @property
    def cors_allowed_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_allowed_origins_csv.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
