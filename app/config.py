from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Quiz content API
    quiz_api_url: str = "https://create.kahoot.it/rest/kahoots"
    http_user_agent: str = "Mozilla/5.0"
    http_timeout_seconds: float = 10.0

    # Game protocol
    game_client: str = "kahoot"
    connect_timeout_seconds: float = 15.0
    joined_fallback_seconds: float = 2.0

    # Backend
    cors_origins: list[str] = ["*"]
    log_level: str = "INFO"

    @property
    def quiz_headers(self) -> dict[str, str]:
        return {"User-Agent": self.http_user_agent}


@lru_cache
def get_settings() -> Settings:
    return Settings()
