from __future__ import annotations

"""Score, deduplicate and rank candidate signals."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Mapping, Sequence

from .models import CandidateSignal, OrderType, RankedSignal

logger = logging.getLogger("perpSignal.strategy.scoring")

STRATEGY_WEIGHTS: dict[str, float] = {
    "news_momentum": 1.0,
    "orderbook_imbalance": 0.9,
    "volume_spike": 0.85,
    "whale_movement": 0.7,
    "cvd_divergence": 0.65,
    "liquidation_cascade": 0.6,
    "cross_exchange": 0.5,
}
DEFAULT_STRATEGY_WEIGHT = 0.3

BASE_CONFIDENCE = 50.0
MAX_CONFIDENCE = 95.0
FAST_TIMEFRAMES = frozenset({"1m", "30s"})


@dataclass(frozen=True, slots=True)
class ScoreWeights:
    """Blend of confidence, reward:risk and strategy weight into one score."""

    confidence: float = 0.4
    risk_reward: float = 0.3
    risk_reward_scale: float = 20.0
    strategy: float = 0.3
    strategy_scale: float = 100.0


DEFAULT_SCORE_WEIGHTS = ScoreWeights()


@dataclass(slots=True)
class SignalStats:
    total: int
    by_strategy: dict[str, int] = field(default_factory=dict)
    avg_score: float = 0.0
    avg_confidence: float = 0.0
    avg_risk_reward: float = 0.0

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "by_strategy": dict(self.by_strategy),
            "avg_score": self.avg_score,
            "avg_confidence": self.avg_confidence,
            "avg_risk_reward": self.avg_risk_reward,
        }


def strategy_weight(
    strategy: str,
    table: Mapping[str, float] = STRATEGY_WEIGHTS,
    default: float = DEFAULT_STRATEGY_WEIGHT,
) -> float:
    return table.get(strategy, default)


def risk_reward(signal: CandidateSignal) -> float:
    risk = signal.stop_loss_fraction
    if risk == 0:
        return 0.0
    return signal.take_profit_fraction / risk


def confidence(signal: CandidateSignal) -> float:
    value = BASE_CONFIDENCE
    if 25 <= signal.leverage <= 50:
        value += 20
    elif signal.leverage > 50:
        value += 10
    if risk_reward(signal) >= 2:
        value += 15
    if signal.timeframe in FAST_TIMEFRAMES:
        value += 10
    if signal.order_type is OrderType.MARKET:
        value += 5
    return min(value, MAX_CONFIDENCE)


def score_signal(
    signal: CandidateSignal,
    weights: ScoreWeights = DEFAULT_SCORE_WEIGHTS,
    strategy_weights: Mapping[str, float] = STRATEGY_WEIGHTS,
) -> RankedSignal:
    conf = confidence(signal)
    rr = risk_reward(signal)
    weight = strategy_weight(signal.strategy, strategy_weights)
    score = (
        weights.confidence * conf
        + weights.risk_reward * (rr * weights.risk_reward_scale)
        + weights.strategy * (weight * weights.strategy_scale)
    )
    return RankedSignal(
        signal=signal,
        score=round(score, 2),
        confidence=conf,
        risk_reward=rr,
    )


def rank(
    candidates: Iterable[CandidateSignal],
    now: datetime,
    max_count: int,
    weights: ScoreWeights = DEFAULT_SCORE_WEIGHTS,
    strategy_weights: Mapping[str, float] = STRATEGY_WEIGHTS,
) -> list[RankedSignal]:
    """Drop expired candidates, keep the best per symbol, return the top ``max_count``.

    Deterministic: per symbol the first of equally scored candidates wins, and
    equal scores across symbols keep the input position of each winner.
    """
    if max_count <= 0:
        return []
    best: dict[str, tuple[int, RankedSignal]] = {}
    expired = 0
    for index, candidate in enumerate(candidates):
        if candidate.is_expired(now):
            expired += 1
            continue
        scored = score_signal(candidate, weights, strategy_weights)
        current = best.get(candidate.symbol)
        if current is None or scored.score > current[1].score:
            best[candidate.symbol] = (index, scored)
    ordered = [item for _, item in sorted(best.values(), key=lambda pair: (-pair[1].score, pair[0]))]
    if expired:
        logger.debug("Dropped %s expired candidates", expired)
    return ordered[:max_count]


def best_by_strategy(ranked: Sequence[RankedSignal]) -> dict[str, RankedSignal]:
    result: dict[str, RankedSignal] = {}
    for item in ranked:
        current = result.get(item.strategy)
        if current is None or item.score > current.score:
            result[item.strategy] = item
    return result


def signal_stats(ranked: Sequence[RankedSignal]) -> SignalStats:
    total = len(ranked)
    if total == 0:
        return SignalStats(total=0)
    by_strategy: dict[str, int] = {}
    for item in ranked:
        by_strategy[item.strategy] = by_strategy.get(item.strategy, 0) + 1
    return SignalStats(
        total=total,
        by_strategy=by_strategy,
        avg_score=round(sum(item.score for item in ranked) / total, 2),
        avg_confidence=round(sum(item.confidence for item in ranked) / total, 2),
        avg_risk_reward=round(sum(item.risk_reward for item in ranked) / total, 2),
    )


__all__ = [
    "DEFAULT_SCORE_WEIGHTS",
    "DEFAULT_STRATEGY_WEIGHT",
    "STRATEGY_WEIGHTS",
    "ScoreWeights",
    "SignalStats",
    "best_by_strategy",
    "confidence",
    "rank",
    "risk_reward",
    "score_signal",
    "signal_stats",
]
