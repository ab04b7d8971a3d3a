"""
Market regime classifier. ADX on 4h measures trend strength, Bollinger width
on 1h measures volatility; the regime stretches or shortens the timebox and
sets how much weight it carries in exit pressure.
"""

from __future__ import annotations
import logging
from typing import Optional

from decision_engine.core.config import RegimeConfig
from decision_engine.core.types import Indicators, MarketRegime, RegimeAnalysis

logger = logging.getLogger("decision_engine.regime")

STRONG_TREND_MIN_BB_WIDTH = 2.0
LOW_VOL_MAX_ADX = 15.0
ALT_TRENDING_ADX_1H = 25.0
ALT_TRENDING_BB_WIDTH = 1.2
DEFAULT_BB_WIDTH = 1.5


def detect_market_regime(
    indicators_4h: Optional[Indicators],
    indicators_1h: Optional[Indicators],
    config: Optional[RegimeConfig] = None,
) -> RegimeAnalysis:
    config = config or RegimeConfig()
    adx_4h = indicators_4h.adx if indicators_4h is not None and indicators_4h.adx is not None else 0.0
    adx_1h = indicators_1h.adx if indicators_1h is not None and indicators_1h.adx is not None else 0.0
    width = DEFAULT_BB_WIDTH
    if indicators_1h is not None and indicators_1h.bb_width is not None:
        width = indicators_1h.bb_width

    alt_trending = adx_1h >= ALT_TRENDING_ADX_1H and width >= ALT_TRENDING_BB_WIDTH
    if adx_4h >= config.strong_trend_adx and width >= STRONG_TREND_MIN_BB_WIDTH:
        regime = MarketRegime.STRONG_TREND
        confidence = min(95.0, 60 + (adx_4h - config.strong_trend_adx) + (width - STRONG_TREND_MIN_BB_WIDTH) * 10)
        reason = f"Strong trend: ADX {adx_4h:.0f} with {width:.1f}% BB width"
    elif adx_4h < LOW_VOL_MAX_ADX and width < config.low_vol_bb_width:
        regime = MarketRegime.LOW_VOLATILITY
        confidence = min(90.0, 50 + (LOW_VOL_MAX_ADX - adx_4h) * 2 + (config.low_vol_bb_width - width) * 20)
        reason = f"Low volatility: ADX {adx_4h:.0f}, BB width {width:.1f}%"
    elif adx_4h >= config.trending_adx or alt_trending:
        regime = MarketRegime.TRENDING
        adx_part = (adx_4h - config.trending_adx) * 2 if adx_4h >= config.trending_adx else 0.0
        confidence = min(85.0, 50 + adx_part + (15 if alt_trending else 0))
        reason = f"Trending: ADX 4h={adx_4h:.0f}, 1h={adx_1h:.0f}, BB width {width:.1f}%"
    else:
        regime = MarketRegime.RANGING
        confidence = min(80.0, 40 + abs(20 - adx_4h) * 2)
        reason = f"Ranging: ADX {adx_4h:.0f}, BB width {width:.1f}%"

    if regime is MarketRegime.STRONG_TREND:
        max_hours, weight = config.strong_trend_max_hours, config.strong_trend_timebox_weight
    elif regime is MarketRegime.TRENDING:
        max_hours, weight = config.trending_max_hours, config.trending_timebox_weight
    else:
        max_hours, weight = config.ranging_max_hours, config.ranging_timebox_weight

    logger.debug("Regime %s (%.0f%%): %s", regime.value, confidence, reason)
    return RegimeAnalysis(
        regime=regime,
        confidence=int(round(confidence)),
        adjusted_timebox_max_hours=max_hours,
        adjusted_timebox_weight=weight,
        reason=reason,
    )
