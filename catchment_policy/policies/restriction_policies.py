# Groundwater restriction policies for the catchment policy engine
# Layer 2: Design configuration
#
# Two restriction rulesets, applied on season start each year:
# - DefaultRestriction: current ruleset, always reads the "current" trigger table
# - CoupledRestriction: couples groundwater to surface water; counts drought years
#   (local HR allocation below a trigger) and reads the "drought" table while the
#   count is within the allowed number of drought years, "nondrought" after that

from dataclasses import dataclass

TRIGGER_TABLES = ("current", "drought", "nondrought")


@dataclass
class RestrictionContext:
    """Input context for a season-start restriction decision.

    Args:
        sw_perc_entitlement: Local-system HR allocation as a fraction of entitlement
        drought_count: Drought years counted so far
    """
    sw_perc_entitlement: float
    drought_count: int = 0


@dataclass
class RestrictionDecision:
    """Output from a restriction decision.

    Args:
        table_name: Trigger table to read proportions from
        drought_count: Updated drought year counter
        decision_reason: Short tag for logging, e.g. "default", "drought", "drought_limit_exceeded"
    """
    table_name: str
    drought_count: int
    decision_reason: str = ""


class BaseRestrictionPolicy:
    """Base class for groundwater restriction policies."""

    name = "base"

    def decide(self, ctx: RestrictionContext) -> RestrictionDecision:
        raise NotImplementedError

    def get_parameters(self) -> dict:
        return {}

    def describe(self) -> str:
        return f"{self.name}: {self.__class__.__doc__}"


class DefaultRestriction(BaseRestrictionPolicy):
    """Current ruleset: proportions from the 'current' trigger table."""

    name = "default"

    def decide(self, ctx: RestrictionContext) -> RestrictionDecision:
        return RestrictionDecision(
            table_name="current",
            drought_count=ctx.drought_count,
            decision_reason="default",
        )


class CoupledRestriction(BaseRestrictionPolicy):
    """Drought-aware ruleset coupled to the surface-water HR allocation.

    Args:
        drought_trigger: HR allocation fraction below which a year counts as drought
        max_drought_years: Drought years allowed on the 'drought' table
    """

    name = "coupled"

    def __init__(self, drought_trigger=0.3, max_drought_years=3):
        if not 0 <= drought_trigger <= 1:
            raise ValueError(f"drought_trigger must be between 0 and 1, got {drought_trigger}")
        if max_drought_years < 0:
            raise ValueError(f"max_drought_years must be >= 0, got {max_drought_years}")
        self.drought_trigger = drought_trigger
        self.max_drought_years = max_drought_years

    def decide(self, ctx: RestrictionContext) -> RestrictionDecision:
        drought_count = ctx.drought_count
        if ctx.sw_perc_entitlement < self.drought_trigger:
            drought_count += 1

        if drought_count <= self.max_drought_years:
            return RestrictionDecision("drought", drought_count, "drought")
        return RestrictionDecision("nondrought", drought_count, "drought_limit_exceeded")

    def get_parameters(self) -> dict:
        return {
            "drought_trigger": self.drought_trigger,
            "max_drought_years": self.max_drought_years,
        }
