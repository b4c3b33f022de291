"""
Integration Test: CLI

Runs the argparse entry point against a SQLite database in a temp data dir.

Test cases:
- init creates the data directory and config template
- fund credits a wallet that the voter balance gate reads
- fund rejects non-positive amounts with a tagged error
"""

import pytest

from championship.__main__ import main
from championship.config import get_settings
from championship.storage import SqlChallengeStore, SqlCustody


@pytest.fixture
def data_home(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in ("DATA_DIR", "DATABASE_URL", "PLATFORM_ACCOUNT", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield tmp_path
    get_settings.cache_clear()


def test_init_writes_config_template(data_home, capsys):
    assert main(["init"]) == 0

    assert (data_home / "data" / "config.yaml").exists()
    assert "✓ Data directory initialized" in capsys.readouterr().out


def test_fund_credits_wallet(data_home, capsys):
    assert main(["init"]) == 0
    assert main(["fund", "--account", "voter1", "--amount", "75"]) == 0
    assert main(["fund", "--account", "voter1", "--amount", "25"]) == 0

    assert "Balance: 100" in capsys.readouterr().out
    store = SqlChallengeStore.from_url(get_settings().get_database_url())
    assert SqlCustody(store).balance_of("voter1") == 100


def test_fund_rejects_zero(data_home, capsys):
    assert main(["init"]) == 0
    assert main(["fund", "--account", "voter1", "--amount", "0"]) == 1

    assert "payment_mismatch" in capsys.readouterr().out
