"""
Unit Tests: Configuration

Test cases:
- Entry and bet splits must each sum to 100
- Withdrawal split must sum to 100
- Quorum cannot exceed capacity
- YAML sections merge over defaults
- YAML platform account is validated like the env value
"""

import pytest
from pydantic import ValidationError

from championship.config import (
    FeeSplitConfig,
    LimitsConfig,
    Settings,
    SettlementConfig,
    WithdrawalConfig,
)


def test_default_splits_sum_to_100():
    fees = FeeSplitConfig()
    assert fees.entry_winner_pct + fees.entry_creator_pct + fees.entry_platform_pct == 100
    assert fees.bet_winner_pct + fees.bet_creator_pct + fees.bet_platform_pct == 100


def test_entry_split_must_sum_to_100():
    with pytest.raises(ValidationError, match="entry pool splits"):
        FeeSplitConfig(entry_winner_pct=90)


def test_bet_split_must_sum_to_100():
    with pytest.raises(ValidationError, match="bet pool splits"):
        FeeSplitConfig(bet_platform_pct=10)


def test_withdrawal_split_must_sum_to_100():
    with pytest.raises(ValidationError):
        WithdrawalConfig(refund_pct=90, fee_pct=5)


def test_quorum_cannot_exceed_capacity():
    with pytest.raises(ValidationError):
        LimitsConfig(min_agents=10, max_agents=5)


def test_unknown_dust_policy_rejected():
    with pytest.raises(ValidationError):
        SettlementConfig(dust_policy="carry_forward")


def test_default_database_url_lives_in_data_dir(tmp_path):
    settings = Settings(_env_file=None, data_dir=tmp_path)
    assert settings.get_database_url() == f"sqlite:///{tmp_path.resolve() / 'championship.db'}"


def test_yaml_sections_merge_over_defaults(tmp_path):
    (tmp_path / "config.yaml").write_text(
        "platform_account: house\n"
        "limits:\n"
        "  min_agents: 5\n"
        "settlement:\n"
        "  dust_policy: sweep_to_platform\n"
    )
    settings = Settings(_env_file=None, data_dir=tmp_path)
    settings.load_yaml_config()

    assert settings.platform_account == "house"
    assert settings.limits.min_agents == 5
    assert settings.limits.max_agents == 64
    assert settings.settlement.dust_policy == "sweep_to_platform"
    assert settings.fees.entry_winner_pct == 95


def test_yaml_with_bad_split_fails(tmp_path):
    (tmp_path / "config.yaml").write_text("fees:\n  entry_winner_pct: 50\n")
    settings = Settings(_env_file=None, data_dir=tmp_path)
    with pytest.raises(ValidationError):
        settings.load_yaml_config()


def test_missing_yaml_keeps_defaults(tmp_path):
    settings = Settings(_env_file=None, data_dir=tmp_path)
    settings.load_yaml_config()
    assert settings.limits.min_entry_fee == 10_000_000


def test_yaml_platform_account_is_stripped(tmp_path):
    (tmp_path / "config.yaml").write_text("platform_account: '  house  '\n")
    settings = Settings(_env_file=None, data_dir=tmp_path)
    settings.load_yaml_config()
    assert settings.platform_account == "house"


def test_yaml_blank_platform_account_fails(tmp_path):
    (tmp_path / "config.yaml").write_text("platform_account: '   '\n")
    settings = Settings(_env_file=None, data_dir=tmp_path)
    with pytest.raises(ValueError, match="platform_account"):
        settings.load_yaml_config()
