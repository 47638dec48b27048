import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# make the top-level packages importable without installing
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from perpsignal.data.market.snapshots import LiquidationTotals, MarketSnapshot  # noqa: E402
from perpsignal.strategy.interfaces import OrderResult  # noqa: E402
from perpsignal.strategy.models import CandidateSignal, Direction, OrderType  # noqa: E402


@pytest.fixture
def now():
    return datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def snap(now):
    def _make(symbol="SOLUSDT", price=100.0, **overrides):
        values = dict(
            symbol=symbol,
            price=price,
            volume_24h=50_000_000.0,
            change_24h=1.0,
            funding_rate=0.0001,
            open_interest=0.0,
            captured_at=now,
        )
        liquidations = overrides.pop("liquidations", None)
        if isinstance(liquidations, tuple):
            liquidations = LiquidationTotals(buy_volume=liquidations[0], sell_volume=liquidations[1])
        values.update(overrides)
        return MarketSnapshot(liquidations=liquidations, **values)

    return _make


@pytest.fixture
def make_signal(now):
    def _make(
        symbol="SOLUSDT",
        direction=Direction.LONG,
        entry=100.0,
        tp_pct=2.0,
        sl_pct=3.0,
        leverage=10,
        strategy="momentum",
        validity=timedelta(minutes=30),
        created=None,
        order_type=OrderType.MARKET,
        timeframe="15m",
    ):
        return CandidateSignal.build(
            symbol=symbol,
            direction=direction,
            entry_price=entry,
            take_profit_pct=tp_pct,
            stop_loss_pct=sl_pct,
            leverage=leverage,
            order_type=order_type,
            reason="test",
            strategy=strategy,
            timeframe=timeframe,
            now=created or now,
            validity=validity,
        )

    return _make


class FakeSink:
    def __init__(self, fail=False):
        self.fail = fail
        self.saved = []
        self.status_updates = []
        self.expired_at = []
        self.opened = []
        self.closed = []

    def save_signals(self, ranked):
        if self.fail:
            raise RuntimeError("sink down")
        self.saved.extend(ranked)
        return len(ranked)

    def get_active_signals(self):
        return []

    def update_signal_status(self, symbol, direction, status):
        self.status_updates.append((symbol, direction, status))
        return 1

    def expire_signals(self, now):
        self.expired_at.append(now)
        return 0

    def record_position_open(self, position):
        self.opened.append(position)

    def record_position_close(self, closed):
        self.closed.append(closed)


class FakeNotifier:
    def __init__(self, fail=False):
        self.fail = fail
        self.signals = []
        self.closes = []

    def notify_signal(self, ranked):
        if self.fail:
            raise RuntimeError("telegram down")
        self.signals.append(ranked)

    def notify_close(self, closed):
        self.closes.append(closed)


class FakeGateway:
    def __init__(self, opened=True, raises=False):
        self.opened = opened
        self.raises = raises
        self.calls = []

    def open(self, signal):
        self.calls.append(signal)
        if self.raises:
            raise RuntimeError("exchange unreachable")
        if not self.opened:
            return OrderResult.failure("rejected")
        return OrderResult(opened=True, order_id=f"oid-{len(self.calls)}", quantity=1.5)


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def gateway():
    return FakeGateway()
