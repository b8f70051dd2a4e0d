from .models import Tier


# Highest threshold first; a balance lands in the first tier it reaches.
TIER_THRESHOLDS: tuple[tuple[int, Tier], ...] = (
    (10000, Tier.PLATINUM),
    (5000, Tier.GOLD),
    (1000, Tier.SILVER),
    (0, Tier.BRONZE),
)

TIER_ORDER: tuple[Tier, ...] = (Tier.BRONZE, Tier.SILVER, Tier.GOLD, Tier.PLATINUM)


def calculate_tier(balance: int) -> Tier:
    for threshold, tier in TIER_THRESHOLDS:
        if balance >= threshold:
            return tier
    return Tier.BRONZE


def tier_rank(tier: Tier) -> int:
    """Position of a tier in bronze < silver < gold < platinum."""
    return TIER_ORDER.index(tier)
