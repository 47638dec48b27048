"""Signal heuristics and their registry."""

from .aggressive import AggressiveStrategy, dynamic_levels
from .base import Strategy, StrategyContext
from .cross_market import CrossExchangeArbitrageStrategy, NewsMomentumStrategy
from .feeds import (
    CvdDelta,
    MarketFeed,
    NewsSentiment,
    OrderbookDepth,
    StaticMarketFeed,
    WhaleFlow,
)
from .flow import CvdDivergenceStrategy, OrderbookImbalanceStrategy, WhaleMovementStrategy
from .funding import FundingRateStrategy
from .liquidation import LiquidationCascadeStrategy, LiquidationHuntStrategy
from .momentum import MomentumStrategy, ScalpingStrategy
from .registry import (
    StrategyEvaluator,
    StrategyRegistry,
    available_strategies,
    create_strategy,
    default_strategies,
)
from .volume import VolumeAnomalyStrategy, VolumeSpikeStrategy

__all__ = [
    "AggressiveStrategy",
    "CrossExchangeArbitrageStrategy",
    "CvdDelta",
    "CvdDivergenceStrategy",
    "FundingRateStrategy",
    "LiquidationCascadeStrategy",
    "LiquidationHuntStrategy",
    "MarketFeed",
    "MomentumStrategy",
    "NewsMomentumStrategy",
    "NewsSentiment",
    "OrderbookDepth",
    "OrderbookImbalanceStrategy",
    "ScalpingStrategy",
    "StaticMarketFeed",
    "Strategy",
    "StrategyContext",
    "StrategyEvaluator",
    "StrategyRegistry",
    "VolumeAnomalyStrategy",
    "VolumeSpikeStrategy",
    "WhaleFlow",
    "WhaleMovementStrategy",
    "available_strategies",
    "create_strategy",
    "default_strategies",
    "dynamic_levels",
]
