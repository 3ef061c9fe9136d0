"""
Profile Selector - picks the rate profile that pays a leg.

Distance tiers are expressed through the minimum threshold of each profile's
BASE rule: a long-haul profile carries a higher threshold than a short-haul
one, and the most specific tier the leg qualifies for wins.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from freightcore.data.models.enums import RuleCategory
from freightcore.data.models.rates import ProfileAssignment, RateRule


class AssignmentTier(BaseModel):
    """An assignment paired with its profile's BASE rule threshold."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    assignment: ProfileAssignment
    min_threshold: Decimal = Decimal("0")


def base_threshold(rules: list[RateRule]) -> Decimal:
    """Minimum threshold of the first active BASE rule, or 0."""
    for rule in rules:
        if rule.category is RuleCategory.BASE and rule.is_active:
            return rule.min_threshold or Decimal("0")
    return Decimal("0")


def determine_profile(tiers: list[AssignmentTier], leg_loaded_miles: Decimal) -> Optional[int]:
    """
    Choose the profile id for a leg.

    Args:
        tiers: The subject's assignments with their BASE thresholds
        leg_loaded_miles: Loaded miles on the leg

    Returns:
        Profile id, or None if the subject has no assignments
    """
    if not tiers:
        return None

    applicable = [t for t in tiers if leg_loaded_miles >= t.min_threshold]

    if not applicable:
        default = next((t for t in tiers if t.assignment.is_default), None)
        return (default or tiers[0]).assignment.profile_id

    # Highest threshold first, default assignment breaks ties
    applicable.sort(key=lambda t: (-t.min_threshold, not t.assignment.is_default))
    return applicable[0].assignment.profile_id
