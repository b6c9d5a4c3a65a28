import pytest

from helpers import FlakyLedger, seed_ledger


@pytest.fixture
def ledger():
    """In-memory ledger with three teams and three unsold players."""
    return seed_ledger(FlakyLedger())


@pytest.fixture
def ledger_file(tmp_path):
    return tmp_path / "ledger" / "auction_ledger.json"
