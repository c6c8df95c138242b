"""Tests for transfer allocation regimes, restriction registries and adaptation options."""

import pytest

from catchment_policy.exceptions import ConfigurationError
from catchment_policy.policies import (
    CoupledAllocations,
    CoupledRestriction,
    DecreaseEnvironmentalWater,
    DefaultRestriction,
    IncreaseEnvironmentalWater,
    IncreaseFarmEntitlements,
    NoChange,
    TransferAllocation,
    TransferRegime,
    advance,
    get_policy_option,
    get_restriction_policy,
    start_season,
)


class TestTransferAllocation:
    """Wet incremental and dry linear regimes."""

    def test_unknown_scenario_rejected(self):
        with pytest.raises(ConfigurationError, match="Valid scenarios"):
            TransferAllocation(scenario="extreme")

    def test_wet_regime_opening_and_step(self):
        allocation = TransferAllocation(scenario="high")
        assert start_season(allocation, hr_fully_allocated=True, timestep=1) == pytest.approx(0.74)
        assert allocation.regime is TransferRegime.WET_INCREMENTAL
        assert allocation.increment == pytest.approx(6.5)

        assert advance(allocation, 2) == pytest.approx(0.805)
        assert advance(allocation, 3) == pytest.approx(0.87)

    def test_wet_regime_capped_at_full(self):
        allocation = TransferAllocation(scenario="low")
        start_season(allocation, hr_fully_allocated=True, timestep=1)
        for ts in range(2, 30):
            advance(allocation, ts)
        assert allocation.percentage == 1.0

    def test_dry_regime_follows_line(self):
        allocation = TransferAllocation(scenario="median")
        opening = start_season(allocation, hr_fully_allocated=False, timestep=1)
        assert allocation.regime is TransferRegime.DRY_MEDIAN
        assert opening == pytest.approx((1.4005 * 2 + 5.3381) / 100.0)

        assert advance(allocation, 10) == pytest.approx((1.4005 * 10 + 5.3381) / 100.0)

    def test_dry_low_clamped_at_zero(self):
        allocation = TransferAllocation(scenario="low")
        allocation.regime = TransferRegime.DRY_LOW
        assert advance(allocation, 1) == 0.0


class TestRegistries:
    """Lookup of restriction policies and adaptation options by name."""

    def test_default_restriction_ignores_parameters(self):
        policy = get_restriction_policy("default", drought_trigger=0.2)
        assert isinstance(policy, DefaultRestriction)

    def test_coupled_restriction_parameters(self):
        policy = get_restriction_policy("coupled", drought_trigger=0.2, max_drought_years=5)
        assert isinstance(policy, CoupledRestriction)
        assert policy.get_parameters() == {"drought_trigger": 0.2, "max_drought_years": 5}

    def test_unknown_restriction(self):
        with pytest.raises(KeyError, match="Available"):
            get_restriction_policy("strict")

    def test_unknown_option(self):
        with pytest.raises(KeyError, match="Unknown policy option"):
            get_policy_option("double_everything")

    def test_option_lookup(self):
        assert isinstance(get_policy_option("default"), NoChange)
        assert isinstance(get_policy_option("increase_environmental_water"), IncreaseEnvironmentalWater)


class TestPolicyOptions:
    """Options applied to a freshly built policy state."""

    def test_increase_environmental_water(self, policy_state):
        IncreaseEnvironmentalWater().apply(policy_state)
        sw_state = policy_state.sw_state

        env = sw_state.zones["ENV"]
        assert env.entitlement.local.hr == pytest.approx(4600.0)
        assert env.entitlement.local.lr == pytest.approx(2300.0)
        assert sw_state.hr_entitlement == pytest.approx(10600.0)
        assert sw_state.env_state.hr_entitlement == pytest.approx(4600.0 - 1656.0)
        assert sw_state.zones["A"].zone_share == pytest.approx(3000.0 / 10600.0)

    def test_decrease_is_always_negative(self, policy_state):
        option = DecreaseEnvironmentalWater(percentage_change=0.1)
        assert option.percentage_change == pytest.approx(-0.1)
        option.apply(policy_state)
        assert policy_state.sw_state.zones["ENV"].entitlement.local.hr == pytest.approx(3600.0)

    def test_farm_entitlements_single_zone(self, policy_state):
        IncreaseFarmEntitlements(zone_id="A").apply(policy_state)

        zone_a = policy_state.sw_state.zones["A"]
        assert zone_a.entitlement.local.hr == pytest.approx(3450.0)
        assert zone_a.entitlement.transfer.hr == pytest.approx(1150.0)
        assert policy_state.gw_state.zones["A"].entitlement == pytest.approx(1150.0)
        assert policy_state.gw_state.zones["B"].entitlement == 500.0
        assert policy_state.sw_state.zones["B"].entitlement.local.hr == 2000.0
        assert policy_state.sw_state.farm_hr_entitlement == pytest.approx(5450.0)

    def test_coupled_allocations_swaps_restriction(self, policy_state):
        CoupledAllocations(drought_trigger=0.4, max_drought_years=2).apply(policy_state)
        restriction = policy_state.gw_state.restriction
        assert isinstance(restriction, CoupledRestriction)
        assert restriction.drought_trigger == 0.4

    def test_change_must_stay_above_minus_one(self):
        with pytest.raises(ValueError):
            DecreaseEnvironmentalWater(percentage_change=1.0)
