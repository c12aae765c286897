"""Configuration management using Pydantic Settings"""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from tao_fanout.batch import BatchSettings


class Settings(BaseSettings):
    """Fanout configuration loaded from FANOUT_* environment variables and .env"""

    model_config = SettingsConfigDict(
        env_prefix="FANOUT_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Network
    network: str = "finney"
    funder_wallet: str = "default"

    # Amounts per account (TAO / alpha); configured independently
    native_amount: float = Field(default=0.0, ge=0)
    token_amount: float = Field(default=0.0, ge=0)
    token_netuid: Optional[int] = None
    token_hotkey: Optional[str] = None

    # Rate limiting: 10 transfers at once, 100ms between dispatches
    max_concurrent: int = Field(default=10, ge=1)
    min_interval: float = Field(default=0.1, ge=0)

    # Confirmation
    max_confirmation_rounds: int = Field(default=10, ge=1)
    round_timeout: Optional[float] = Field(default=60.0, gt=0)
    validity_period: int = Field(default=64, ge=4)
    tip: int = Field(default=0, ge=0)  # rao

    batch_deadline: Optional[float] = Field(default=None, gt=0)

    output_dir: Path = Path(".")

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    @property
    def token_configured(self) -> bool:
        return self.token_netuid is not None and bool(self.token_hotkey)

    def batch_settings(self) -> BatchSettings:
        return BatchSettings(
            max_concurrent=self.max_concurrent,
            min_interval=self.min_interval,
            max_rounds=self.max_confirmation_rounds,
            round_timeout=self.round_timeout,
            deadline=self.batch_deadline,
        )


def get_settings(**overrides) -> Settings:
    """Settings from the environment, with non-None overrides (e.g. CLI flags) applied."""
    return Settings(**{k: v for k, v in overrides.items() if v is not None})
