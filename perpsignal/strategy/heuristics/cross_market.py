from __future__ import annotations

"""Heuristics that need data from outside the exchange: other venues and news."""

import math
from datetime import timedelta
from typing import TYPE_CHECKING, Sequence

from ..models import CandidateSignal, Direction, OrderType
from .base import Strategy, StrategyContext

if TYPE_CHECKING:  # pragma: no cover - typing only
    from perpsignal.data.market.snapshots import MarketSnapshot


class CrossExchangeArbitrageStrategy(Strategy):
    """Buy the cheapest venue when cross-venue prices diverge."""

    name = "cross_exchange"
    kind = "default"
    max_signals = 3

    min_volume = 20_000_000.0
    min_diff_pct = 0.05

    def evaluate(
        self,
        snapshots: Sequence["MarketSnapshot"],
        context: StrategyContext,
    ) -> list[CandidateSignal]:
        if context.feed is None:
            return []
        signals: list[CandidateSignal] = []
        for snap in snapshots:
            if snap.volume_24h <= self.min_volume:
                continue
            venues = context.feed.venue_prices(snap.symbol)
            if not venues:
                continue
            quotes = sorted(
                ((venue, price) for venue, price in venues.items() if price and price > 0),
                key=lambda item: item[1],
            )
            if len(quotes) < 2:
                continue
            (low_venue, low), (high_venue, high) = quotes[0], quotes[-1]
            diff_pct = (high - low) / low * 100
            if diff_pct < self.min_diff_pct:
                continue
            ceiling = self._ceiling(snap.symbol, context)
            leverage = min(max(10, min(10 + math.floor(diff_pct * 100), ceiling)), ceiling)
            take_profit = min(diff_pct * 0.8, 0.5)
            stop_loss = min(diff_pct * 0.3, 0.2)
            signals.append(
                CandidateSignal.build(
                    symbol=snap.symbol,
                    direction=Direction.LONG,
                    entry_price=low,
                    take_profit_pct=take_profit,
                    stop_loss_pct=stop_loss,
                    leverage=leverage,
                    order_type=OrderType.LIMIT,
                    reason=(
                        f"Cross-Exchange Arbitrage {diff_pct * 100:.0f}bps | Buy: {low_venue} "
                        f"| Sell ref: {high_venue} ${high:.4f}"
                    ),
                    strategy=self.name,
                    timeframe="5m",
                    now=context.now,
                    validity=timedelta(minutes=15),
                    intensity=diff_pct,
                    metadata={"venues": dict(quotes)},
                )
            )
        return self._top(signals)


class NewsMomentumStrategy(Strategy):
    """Trade in the direction of news sentiment on fast, liquid movers."""

    name = "news_momentum"
    kind = "scalping"
    max_signals = 2

    min_volume = 15_000_000.0
    min_change_pct = 2.0
    min_intensity = 0.4

    def evaluate(
        self,
        snapshots: Sequence["MarketSnapshot"],
        context: StrategyContext,
    ) -> list[CandidateSignal]:
        if context.feed is None:
            return []
        signals: list[CandidateSignal] = []
        for snap in snapshots:
            if snap.volume_24h <= self.min_volume or abs(snap.change_24h) <= self.min_change_pct:
                continue
            news = context.feed.news_sentiment(snap.symbol)
            if news is None or news.sentiment == 0:
                continue
            velocity = min(abs(snap.change_24h) * snap.volume_24h / 100_000_000, 10.0)
            intensity = (news.news_score + abs(news.sentiment) + min(velocity / 5, 1.0)) / 3
            if intensity < self.min_intensity:
                continue
            direction = Direction.LONG if news.sentiment > 0 else Direction.SHORT
            ceiling = self._ceiling(snap.symbol, context)
            leverage = min(max(25, min(25 + math.floor(intensity * 25), ceiling)), ceiling)
            take_profit = min(1.0 + intensity * velocity * 0.3, 4.0)
            stop_loss = min(0.6 + intensity * 0.2, 1.0)
            if news.sentiment > 0.3:
                mood = "Bullish"
            elif news.sentiment < -0.3:
                mood = "Bearish"
            else:
                mood = "Neutral"
            signals.append(
                CandidateSignal.build(
                    symbol=snap.symbol,
                    direction=direction,
                    entry_price=snap.price,
                    take_profit_pct=take_profit,
                    stop_loss_pct=stop_loss,
                    leverage=leverage,
                    order_type=OrderType.MARKET,
                    reason=f"News Momentum {intensity * 100:.0f}% | {mood} | Velocity: {velocity:.1f}",
                    strategy=self.name,
                    timeframe="1m",
                    now=context.now,
                    validity=timedelta(minutes=10),
                    intensity=intensity,
                )
            )
        return self._top(signals)


__all__ = ["CrossExchangeArbitrageStrategy", "NewsMomentumStrategy"]
