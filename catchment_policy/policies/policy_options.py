# Adaptation policy options for the catchment policy engine
# Layer 2: Design configuration
#
# Options applied once to a freshly built policy state, before the run starts:
# - NoChange: keep current arrangements
# - CoupledAllocations: groundwater restrictions follow surface-water drought years
# - ChangeEnvironmentalWater: scale environmental entitlements up or down
# - ChangeFarmEntitlements: scale farm surface and groundwater entitlements

from catchment_policy.policies.restriction_policies import CoupledRestriction


class BasePolicyOption:
    """Base class for adaptation policy options."""

    name = "base"

    def apply(self, policy_state):
        raise NotImplementedError

    def get_parameters(self) -> dict:
        return {}

    def describe(self) -> str:
        return f"{self.name}: {self.__class__.__doc__}"


class NoChange(BasePolicyOption):
    """Keep current policy settings."""

    name = "default"

    def apply(self, policy_state):
        return policy_state


class CoupledAllocations(BasePolicyOption):
    """Switch groundwater restrictions to the coupled drought-aware ruleset."""

    name = "implement_coupled_allocations"

    def __init__(self, drought_trigger=0.3, max_drought_years=3):
        self.drought_trigger = drought_trigger
        self.max_drought_years = max_drought_years

    def apply(self, policy_state):
        policy_state.gw_state.restriction = CoupledRestriction(
            drought_trigger=self.drought_trigger,
            max_drought_years=self.max_drought_years,
        )
        return policy_state

    def get_parameters(self) -> dict:
        return {
            "drought_trigger": self.drought_trigger,
            "max_drought_years": self.max_drought_years,
        }


class ChangeEnvironmentalWater(BasePolicyOption):
    """Scale environmental HR and LR entitlements by (1 + percentage_change).

    Args:
        percentage_change: Fractional change, e.g. 0.15 or -0.15
    """

    name = "change_environmental_water"

    def __init__(self, percentage_change=0.15):
        if percentage_change <= -1.0:
            raise ValueError(f"percentage_change must be > -1, got {percentage_change}")
        self.percentage_change = percentage_change

    def apply(self, policy_state):
        sw_state = policy_state.sw_state
        multiplier = 1.0 + self.percentage_change
        for zone in sw_state.zones.of_type("environmental"):
            zone.entitlement.local.hr *= multiplier
            zone.entitlement.local.lr *= multiplier
        sw_state.recalculate_entitlements()
        return policy_state

    def get_parameters(self) -> dict:
        return {"percentage_change": self.percentage_change}


class ChangeFarmEntitlements(BasePolicyOption):
    """Scale farm surface-water and groundwater entitlements.

    Args:
        percentage_change: Fractional change, e.g. 0.15 or -0.15
        zone_id: Restrict the change to one zone (all farm zones if None)
    """

    name = "change_farm_entitlements"

    def __init__(self, percentage_change=0.15, zone_id=None):
        if percentage_change <= -1.0:
            raise ValueError(f"percentage_change must be > -1, got {percentage_change}")
        self.percentage_change = percentage_change
        self.zone_id = zone_id

    def apply(self, policy_state):
        sw_state = policy_state.sw_state
        multiplier = 1.0 + self.percentage_change

        for zone in sw_state.farm_zones():
            if self.zone_id is not None and zone.zone_id != self.zone_id:
                continue
            for volumes in (zone.entitlement.local, zone.entitlement.transfer, zone.entitlement.farm):
                volumes.hr *= multiplier
                volumes.lr *= multiplier

        for gw_zone in policy_state.gw_state.zones:
            if self.zone_id is None or gw_zone.zone_id == self.zone_id:
                gw_zone.entitlement *= multiplier

        sw_state.recalculate_entitlements()
        return policy_state

    def get_parameters(self) -> dict:
        return {"percentage_change": self.percentage_change, "zone_id": self.zone_id}


class IncreaseEnvironmentalWater(ChangeEnvironmentalWater):
    """Increase environmental entitlements by 15%."""

    name = "increase_environmental_water"

    def __init__(self, percentage_change=0.15):
        super().__init__(abs(percentage_change))


class DecreaseEnvironmentalWater(ChangeEnvironmentalWater):
    """Decrease environmental entitlements by 15%."""

    name = "decrease_environmental_water"

    def __init__(self, percentage_change=0.15):
        super().__init__(-abs(percentage_change))


class IncreaseFarmEntitlements(ChangeFarmEntitlements):
    """Increase farm entitlements (default 15%)."""

    name = "increase_farm_entitlements"

    def __init__(self, percentage_change=0.15, zone_id=None):
        super().__init__(abs(percentage_change), zone_id)


class DecreaseFarmEntitlements(ChangeFarmEntitlements):
    """Decrease farm entitlements (default 15%)."""

    name = "decrease_farm_entitlements"

    def __init__(self, percentage_change=0.15, zone_id=None):
        super().__init__(-abs(percentage_change), zone_id)
