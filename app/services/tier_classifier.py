"""
Tier Classifier for the rewards program.

Maps 12-month rolling spend to a tier. Pure functions only: the ledger
calls ``classify`` after every balance change that moves ``yearly_spend``.

Bands (inclusive):
    Bronze      0 .. 50,000
    Silver 50,001 .. 200,000
    Gold  200,001 ..

A spend of exactly 50,000 is still Bronze and 200,000 is still Silver;
the storefront has always promoted on the first point past the line.
"""
from typing import Dict, List, Optional

from ..models.rewards import TierLevel

SILVER_MIN_SPEND = 50001
GOLD_MIN_SPEND = 200001

# Lower bound of each band, lowest tier first
TIER_THRESHOLDS = [
    (TierLevel.BRONZE, 0),
    (TierLevel.SILVER, SILVER_MIN_SPEND),
    (TierLevel.GOLD, GOLD_MIN_SPEND),
]

TIER_BENEFITS: Dict[TierLevel, List[str]] = {
    TierLevel.BRONZE: [
        'Access to weekly flash-deal alerts',
    ],
    TierLevel.SILVER: [
        '2% off all orders',
        'Early-bird slots on same-day delivery',
        'All Bronze benefits',
    ],
    TierLevel.GOLD: [
        '5% off all orders',
        'Free same-day delivery',
        'Exclusive volume bundles',
        'All Silver benefits',
    ],
}


def classify(yearly_spend: int) -> TierLevel:
    """Tier for a rolling spend amount."""
    tier = TierLevel.BRONZE
    for level, minimum in TIER_THRESHOLDS:
        if yearly_spend >= minimum:
            tier = level
    return tier


def next_tier(tier: TierLevel) -> Optional[TierLevel]:
    """The tier above ``tier``, or None at the top."""
    levels = [level for level, _ in TIER_THRESHOLDS]
    index = levels.index(TierLevel(tier))
    if index + 1 < len(levels):
        return levels[index + 1]
    return None


def tier_minimum(tier: TierLevel) -> int:
    """Lowest spend that qualifies for ``tier``."""
    return dict(TIER_THRESHOLDS)[TierLevel(tier)]


def points_to_next_tier(yearly_spend: int) -> int:
    """Spend still needed to reach the next tier; 0 once Gold."""
    upcoming = next_tier(classify(yearly_spend))
    if upcoming is None:
        return 0
    return tier_minimum(upcoming) - yearly_spend


def tier_progress(yearly_spend: int) -> float:
    """
    Percentage (0-100) of the way through the current band toward the next.

    Gold is always 100.
    """
    current = classify(yearly_spend)
    upcoming = next_tier(current)
    if upcoming is None:
        return 100.0

    # Bronze starts at 0; higher bands start at their own minimum
    band_start = tier_minimum(current)
    band_size = tier_minimum(upcoming) - band_start
    progress = (yearly_spend - band_start) / band_size * 100
    return round(min(max(progress, 0.0), 100.0), 2)


def tier_benefits(tier: TierLevel) -> List[str]:
    """Benefit descriptions for a tier."""
    return list(TIER_BENEFITS[TierLevel(tier)])
