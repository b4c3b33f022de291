"""Configuration management using Pydantic Settings."""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

CONFIG_SECTIONS = [
    "fees",
    "limits",
    "withdrawal",
    "betting",
    "voting",
    "settlement",
]


def _clean_account(v: str) -> str:
    if not v.strip():
        raise ValueError("platform_account cannot be empty")
    return v.strip()


class FeeSplitConfig(BaseModel):
    """Percentage splits of the entry and bet pools at finalization."""

    entry_winner_pct: int = Field(default=95, ge=0, le=100)
    entry_creator_pct: int = Field(default=4, ge=0, le=100)
    entry_platform_pct: int = Field(default=1, ge=0, le=100)
    bet_winner_pct: int = Field(default=95, ge=0, le=100)
    bet_creator_pct: int = Field(default=2, ge=0, le=100)
    bet_platform_pct: int = Field(default=3, ge=0, le=100)

    @model_validator(mode="after")
    def check_totals(self) -> "FeeSplitConfig":
        entry_total = (
            self.entry_winner_pct + self.entry_creator_pct + self.entry_platform_pct
        )
        bet_total = self.bet_winner_pct + self.bet_creator_pct + self.bet_platform_pct
        if entry_total != 100:
            raise ValueError(f"entry pool splits must sum to 100, got {entry_total}")
        if bet_total != 100:
            raise ValueError(f"bet pool splits must sum to 100, got {bet_total}")
        return self


class LimitsConfig(BaseModel):
    """Challenge admission limits."""

    min_entry_fee: int = Field(default=10_000_000, ge=1)  # smallest currency units
    min_agents: int = Field(default=3, ge=1)  # quorum
    max_agents: int = Field(default=64, ge=1)

    @model_validator(mode="after")
    def check_quorum_fits(self) -> "LimitsConfig":
        if self.min_agents > self.max_agents:
            raise ValueError("min_agents cannot exceed max_agents")
        return self


class WithdrawalConfig(BaseModel):
    """Early-exit split of a withdrawn agent's entry fee."""

    refund_pct: int = Field(default=98, ge=0, le=100)
    fee_pct: int = Field(default=2, ge=0, le=100)

    @model_validator(mode="after")
    def check_total(self) -> "WithdrawalConfig":
        if self.refund_pct + self.fee_pct != 100:
            raise ValueError("withdrawal refund_pct and fee_pct must sum to 100")
        return self


class BettingConfig(BaseModel):
    """Side-wager rules."""

    allow_creator_bets: bool = False


class VotingConfig(BaseModel):
    """Judging rules. A zero minimum disables the voter balance gate."""

    min_vote_balance: int = Field(default=0, ge=0)


class SettlementConfig(BaseModel):
    """What happens to rounding residue left in a vault."""

    dust_policy: Literal["leave", "sweep_to_platform"] = "leave"


class Settings(BaseSettings):
    """Main configuration class."""

    # Paths
    data_dir: Path = Path("data")
    database_url: str = ""

    # Accounts
    platform_account: str = "platform"

    # API server
    host: str = "127.0.0.1"
    port: int = 8000

    # Observability
    logfire_token: str = ""
    environment: str = "development"
    log_level: str = "INFO"

    # Nested configuration sections
    fees: FeeSplitConfig = Field(default_factory=FeeSplitConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    withdrawal: WithdrawalConfig = Field(default_factory=WithdrawalConfig)
    betting: BettingConfig = Field(default_factory=BettingConfig)
    voting: VotingConfig = Field(default_factory=VotingConfig)
    settlement: SettlementConfig = Field(default_factory=SettlementConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("data_dir", mode="after")
    @classmethod
    def resolve_data_dir(cls, v: Path) -> Path:
        """Resolve data directory to absolute path."""
        return v.resolve()

    @field_validator("platform_account")
    @classmethod
    def validate_platform_account(cls, v: str) -> str:
        return _clean_account(v)

    def get_database_url(self) -> str:
        """Return the configured database URL, defaulting to SQLite in data_dir."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.data_dir / 'championship.db'}"

    def load_yaml_config(self) -> None:
        """Load and merge YAML configuration."""
        config_path = self.data_dir / "config.yaml"

        if not config_path.exists():
            logger.warning(
                f"Config file not found: {config_path}. "
                "Using defaults. Run 'python -m championship init' to create it."
            )
            return

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f)

            if not yaml_config:
                logger.warning(f"Empty config file: {config_path}")
                return

            for section_name in CONFIG_SECTIONS:
                if section_name in yaml_config:
                    section = getattr(self, section_name)
                    yaml_section = yaml_config[section_name]

                    section_dict = section.model_dump()
                    section_dict.update(yaml_section)

                    new_section = section.__class__(**section_dict)
                    setattr(self, section_name, new_section)

            if "platform_account" in yaml_config:
                self.platform_account = _clean_account(str(yaml_config["platform_account"]))

            logger.info(f"Loaded configuration from {config_path}")

        except yaml.YAMLError as e:
            logger.error(f"Failed to parse YAML config: {e}")
            raise
        except Exception as e:
            logger.error(f"Failed to load config: {e}")
            raise


@lru_cache()
def get_settings() -> Settings:
    """Get singleton Settings instance."""
    settings = Settings()
    settings.load_yaml_config()
    return settings
