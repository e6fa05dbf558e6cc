from __future__ import annotations

from functools import cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from domain.exchange_rate import CANONICAL_PAIRS, CurrencyPair

ENV_FILE_NAME = ".env"

# Public Alpha Vantage demo key: heavily rate limited, claim your own at
# https://www.alphavantage.co/support/#api-key
DEMO_ALPHA_VANTAGE_API_KEY = "2BY6TAJHCM9Z7HQT"


class AppSettings(BaseSettings):
    alpha_vantage_api_key: str = DEMO_ALPHA_VANTAGE_API_KEY
    alpha_vantage_base_url: str = "https://www.alphavantage.co"
    request_timeout: float = 10.0

    db_root: Path = Path(".oracle")
    api_host: str = "127.0.0.1"
    api_port: int = 3518

    run_daemon: bool = True
    poll_pairs: list[str] = [str(pair) for pair in CANONICAL_PAIRS]
    retention_minutes: int = 60
    max_retries: int = 3
    batch_wait_seconds: float = 30.0

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="ORACLE_",
        env_file=ENV_FILE_NAME,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("poll_pairs")
    @classmethod
    def _validate_pairs(cls, value: list[str]) -> list[str]:
        for raw in value:
            CurrencyPair.parse(raw)
        return value

    @field_validator("retention_minutes", "max_retries")
    @classmethod
    def _validate_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @property
    def pairs(self) -> tuple[CurrencyPair, ...]:
        return tuple(CurrencyPair.parse(raw) for raw in self.poll_pairs)

    @property
    def uses_demo_key(self) -> bool:
        return self.alpha_vantage_api_key == DEMO_ALPHA_VANTAGE_API_KEY


@cache
def config() -> AppSettings:
    return AppSettings()


def render_env_file(settings: AppSettings) -> str:
    lines = [
        "# Generated configuration for the FX oracle.",
        "# Every value may also be set as an environment variable of the same name.",
        "",
    ]
    for name, value in settings.model_dump(mode="json").items():
        if isinstance(value, list):
            value = "[" + ",".join(f'"{item}"' for item in value) + "]"
        lines.append(f"ORACLE_{name.upper()}={value}")
    return "\n".join(lines) + "\n"


__all__ = ["AppSettings", "config", "render_env_file"]
