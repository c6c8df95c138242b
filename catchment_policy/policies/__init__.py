# Policy module exports for the catchment policy engine
# Layer 2: Design configuration

from catchment_policy.policies.transfer_allocation import (
    TransferRegime,
    TransferAllocation,
    WET_SCHEDULE,
    DRY_LINES,
    evaluate,
    start_season,
    advance,
    validate_scenario,
)

from catchment_policy.policies.restriction_policies import (
    RestrictionContext,
    RestrictionDecision,
    BaseRestrictionPolicy,
    DefaultRestriction,
    CoupledRestriction,
    TRIGGER_TABLES,
)

from catchment_policy.policies.policy_options import (
    BasePolicyOption,
    NoChange,
    CoupledAllocations,
    ChangeEnvironmentalWater,
    ChangeFarmEntitlements,
    IncreaseEnvironmentalWater,
    DecreaseEnvironmentalWater,
    IncreaseFarmEntitlements,
    DecreaseFarmEntitlements,
)

# Policy registries for lookup by name (as used in scenario YAML)
RESTRICTION_POLICIES = {
    "default": DefaultRestriction,
    "coupled": CoupledRestriction,
}

POLICY_OPTIONS = {
    "default": NoChange,
    "implement_coupled_allocations": CoupledAllocations,
    "increase_environmental_water": IncreaseEnvironmentalWater,
    "decrease_environmental_water": DecreaseEnvironmentalWater,
    "increase_farm_entitlements": IncreaseFarmEntitlements,
    "decrease_farm_entitlements": DecreaseFarmEntitlements,
}


def get_restriction_policy(name, **kwargs):
    """Get groundwater restriction policy instance by name.

    Args:
        name: Restriction type from scenario YAML ("default" or "coupled")
        **kwargs: Policy-specific parameters (ignored by "default")

    Returns:
        Instantiated restriction policy

    Raises:
        KeyError: If restriction type not found
    """
    if name not in RESTRICTION_POLICIES:
        available = ", ".join(RESTRICTION_POLICIES.keys())
        raise KeyError(f"Unknown restriction type '{name}'. Available: {available}")
    policy_class = RESTRICTION_POLICIES[name]
    if policy_class is DefaultRestriction:
        return policy_class()
    return policy_class(**kwargs)


def get_policy_option(name, **kwargs):
    """Get adaptation policy option instance by name.

    Args:
        name: Option name from scenario YAML
        **kwargs: Option-specific parameters

    Returns:
        Instantiated policy option

    Raises:
        KeyError: If option name not found
    """
    if name not in POLICY_OPTIONS:
        available = ", ".join(POLICY_OPTIONS.keys())
        raise KeyError(f"Unknown policy option '{name}'. Available: {available}")
    return POLICY_OPTIONS[name](**kwargs)


__all__ = [
    # Transfer allocation
    "TransferRegime",
    "TransferAllocation",
    "WET_SCHEDULE",
    "DRY_LINES",
    "evaluate",
    "start_season",
    "advance",
    "validate_scenario",
    # Groundwater restrictions
    "RestrictionContext",
    "RestrictionDecision",
    "BaseRestrictionPolicy",
    "DefaultRestriction",
    "CoupledRestriction",
    "TRIGGER_TABLES",
    "RESTRICTION_POLICIES",
    "get_restriction_policy",
    # Adaptation options
    "BasePolicyOption",
    "NoChange",
    "CoupledAllocations",
    "ChangeEnvironmentalWater",
    "ChangeFarmEntitlements",
    "IncreaseEnvironmentalWater",
    "DecreaseEnvironmentalWater",
    "IncreaseFarmEntitlements",
    "DecreaseFarmEntitlements",
    "POLICY_OPTIONS",
    "get_policy_option",
]
