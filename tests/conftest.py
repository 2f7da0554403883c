import pytest

from modules.lot_ledger import LotLedger, RecoveryPolicy
from modules.trade_recorder import TradeRecorder


# ------------------------- Fixtures ------------------------- #

@pytest.fixture
def ledger_path(tmp_path):
    return tmp_path / "data" / "positions_BTC-USDT.json"


@pytest.fixture
def ledger(ledger_path):
    return LotLedger("BTC-USDT", ledger_path, recovery_policy=RecoveryPolicy.FAIL_FAST)


@pytest.fixture
def recorder(tmp_path):
    return TradeRecorder(tmp_path / "logs" / "transactions.csv", tmp_path / "logs" / "trades.log")
