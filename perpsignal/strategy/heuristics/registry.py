from __future__ import annotations

"""Explicit strategy registry and the per-tick evaluator."""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Iterable, Optional, Sequence

from ..models import CandidateSignal
from .aggressive import AggressiveStrategy
from .base import Strategy, StrategyContext
from .cross_market import CrossExchangeArbitrageStrategy, NewsMomentumStrategy
from .flow import CvdDivergenceStrategy, OrderbookImbalanceStrategy, WhaleMovementStrategy
from .funding import FundingRateStrategy
from .liquidation import LiquidationCascadeStrategy, LiquidationHuntStrategy
from .momentum import MomentumStrategy, ScalpingStrategy
from .volume import VolumeAnomalyStrategy, VolumeSpikeStrategy

if TYPE_CHECKING:  # pragma: no cover - typing only
    from perpsignal.data.market.snapshots import MarketSnapshot

    from .feeds import MarketFeed

logger = logging.getLogger("perpSignal.strategy.registry")

_STRATEGY_FACTORIES: dict[str, Callable[[], Strategy]] = {
    "funding": FundingRateStrategy,
    "aggressive": AggressiveStrategy,
    "momentum": MomentumStrategy,
    "scalping": ScalpingStrategy,
    "volume_spike": VolumeSpikeStrategy,
    "volume_anomaly": VolumeAnomalyStrategy,
    "liquidation_cascade": LiquidationCascadeStrategy,
    "liquidation_hunt": LiquidationHuntStrategy,
    "whale_movement": WhaleMovementStrategy,
    "orderbook_imbalance": OrderbookImbalanceStrategy,
    "cvd_divergence": CvdDivergenceStrategy,
    "cross_exchange": CrossExchangeArbitrageStrategy,
    "news_momentum": NewsMomentumStrategy,
}


def available_strategies() -> list[str]:
    return sorted(_STRATEGY_FACTORIES)


def create_strategy(name: str) -> Strategy:
    factory = _STRATEGY_FACTORIES.get(name.strip().lower())
    if factory is None:
        valid = ", ".join(available_strategies())
        raise ValueError(f"Unknown strategy '{name}'. Valid options: {valid}")
    return factory()


def default_strategies(names: Optional[Iterable[str]] = None) -> list[Strategy]:
    selected = list(names) if names else list(_STRATEGY_FACTORIES)
    return [create_strategy(name) for name in selected]


class StrategyRegistry:
    """Ordered set of strategy instances keyed by name."""

    def __init__(self, strategies: Optional[Iterable[Strategy]] = None) -> None:
        self._strategies: dict[str, Strategy] = {}
        for strategy in strategies or ():
            self.register(strategy)

    def register(self, strategy: Strategy) -> None:
        if not strategy.name:
            raise ValueError(f"{type(strategy).__name__} has no name")
        if strategy.name in self._strategies:
            raise ValueError(f"strategy '{strategy.name}' already registered")
        self._strategies[strategy.name] = strategy

    def unregister(self, name: str) -> Optional[Strategy]:
        return self._strategies.pop(name, None)

    def names(self) -> list[str]:
        return list(self._strategies)

    def __iter__(self):
        return iter(list(self._strategies.values()))

    def __len__(self) -> int:
        return len(self._strategies)

    def __contains__(self, name: object) -> bool:
        return name in self._strategies


class StrategyEvaluator:
    """Run every registered strategy over one batch of snapshots."""

    def __init__(
        self,
        registry: StrategyRegistry,
        *,
        feed: Optional["MarketFeed"] = None,
        leverage_cap: int = 100,
    ) -> None:
        self._registry = registry
        self._feed = feed
        self._leverage_cap = leverage_cap

    @property
    def registry(self) -> StrategyRegistry:
        return self._registry

    def evaluate(
        self,
        snapshots: Sequence["MarketSnapshot"],
        now: datetime,
    ) -> list[CandidateSignal]:
        context = StrategyContext(now=now, feed=self._feed, leverage_cap=self._leverage_cap)
        candidates: list[CandidateSignal] = []
        for strategy in self._registry:
            try:
                produced = strategy.evaluate(snapshots, context)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Strategy %s failed: %s", strategy.name, exc)
                continue
            if produced:
                logger.debug("Strategy %s produced %s candidates", strategy.name, len(produced))
            candidates.extend(produced)
        return candidates


__all__ = [
    "StrategyEvaluator",
    "StrategyRegistry",
    "available_strategies",
    "create_strategy",
    "default_strategies",
]
