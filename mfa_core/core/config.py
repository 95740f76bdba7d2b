from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str | List[str]) -> List[str]:
    if isinstance(value, list):
        return value
    return [v.strip() for v in str(value).split(",") if v and v.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="MFACORE_",
        extra="ignore",
    )

    app_name: str = "MFA Core API"
    database_url: str = "sqlite:///./mfa_core.db"
    db_echo: bool = False

    # values must come from environment/.env in any real deployment
    jwt_secret: str = ""
    jwt_issuer: str = "mfa-core"
    session_token_exp_minutes: int = 60

    totp_issuer: str = "MFA Core"
    # number of 30s steps accepted either side of the current one
    totp_valid_window: int = 1

    challenge_ttl_minutes: int = 5
    challenge_max_attempts: int = 5
    challenge_retention_minutes: int = 60
    max_enrolled_factors: int = 10

    secret_encryption_key: str = ""

    log_level: str = "INFO"
    log_dir: str | None = None

    cors_origins_raw: str = "http://localhost:5173"
    enable_docs: bool = True

    @field_validator("totp_valid_window")
    @classmethod
    def _bounded_window(cls, value: int) -> int:
        if value < 0 or value > 1:
            raise ValueError("totp_valid_window must be 0 or 1; wider skew windows are not allowed")
        return value

    @field_validator("challenge_ttl_minutes", "challenge_max_attempts", "max_enrolled_factors")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @property
    def cors_origins(self) -> List[str]:
        parsed = _split_csv(self.cors_origins_raw)
        return parsed or ["http://localhost:5173"]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
