"""Tests for the allocation ledger.

Tests cover:
- prop_subtract(): worked examples, conservation, non-negative results
- first_allocation(): opening HR allocation from the shared pool
- later_allocation(): HR top-up capped at entitlement, LR once reserves are covered
- draw_zone_order(): carryover -> LR -> HR draw order, overrun handling
- calc_other_orders(), draw_environmental_order()
"""

from datetime import date

import pytest

from catchment_policy.exceptions import AllocationOverrunError
from catchment_policy.simulation.ledger import (
    calc_allocation,
    calc_other_orders,
    draw_environmental_order,
    draw_zone_order,
    first_allocation,
    later_allocation,
    lr_allocation_due,
    prop_subtract,
    update_catchment_stats,
)
from catchment_policy.simulation.state import ReliabilityVolumes

from conftest import make_catchment_zones, make_sw_state, make_zone


class TestPropSubtract:
    """Tests for the cascading low-then-high subtraction."""

    def test_low_pool_covers_demand(self):
        assert prop_subtract(100.0, 50.0, 80.0) == (20.0, 50.0, 0.0)

    def test_shortfall_taken_from_high_pool(self):
        assert prop_subtract(30.0, 50.0, 60.0) == (0.0, 20.0, 0.0)

    def test_unmet_demand_returned(self):
        assert prop_subtract(30.0, 20.0, 60.0) == (0.0, 0.0, 10.0)

    def test_zero_demand_leaves_pools(self):
        assert prop_subtract(30.0, 20.0, 0.0) == (30.0, 20.0, 0.0)

    def test_empty_pools_return_whole_demand(self):
        assert prop_subtract(0.0, 0.0, 45.0) == (0.0, 0.0, 45.0)

    def test_near_zero_remainder_snapped(self):
        low, high, unmet = prop_subtract(10.0, 5.0, 15.0 - 1e-9)
        assert (low, high, unmet) == (0.0, 0.0, 0.0)

    @pytest.mark.parametrize("low,high,demand", [
        (0.0, 0.0, 0.0),
        (100.0, 0.0, 250.0),
        (0.0, 75.0, 20.0),
        (12.5, 7.25, 19.75),
        (1e6, 3e5, 1.2e6),
        (40.0, 60.0, 500.0),
    ])
    def test_conservation_and_non_negative(self, low, high, demand):
        """Consumed volume plus unmet demand equals the demand; nothing goes negative."""
        rem_low, rem_high, unmet = prop_subtract(low, high, demand)
        consumed = (low - rem_low) + (high - rem_high)
        assert consumed + unmet == pytest.approx(demand)
        assert rem_low >= 0.0 and rem_high >= 0.0 and unmet >= 0.0
        assert rem_low + rem_high + consumed == pytest.approx(low + high)


class TestFirstAllocation:
    """Opening allocation on the first tick of a season."""

    def test_pool_below_entitlement(self, sw_state):
        """HR 10000 / LR 5000 with a 6000 ML pool opens at 60% HR and no LR."""
        assert sw_state.hr_entitlement == 10000.0
        assert sw_state.lr_entitlement == 5000.0

        first_allocation(sw_state, 1, 6000.0)
        update_catchment_stats(sw_state)

        assert sw_state.avail_allocation.local.hr == pytest.approx(6000.0)
        assert sw_state.perc_entitlement.local.hr == pytest.approx(0.6)
        assert sw_state.perc_entitlement.local.lr == 0.0
        assert sw_state.cumu_allocation.local.lr == 0.0

    def test_zone_shares_follow_entitlement(self, sw_state):
        first_allocation(sw_state, 1, 6000.0)
        assert sw_state.zones["A"].avail_allocation.local.hr == pytest.approx(1800.0)
        assert sw_state.zones["ENV"].avail_allocation.local.hr == pytest.approx(2400.0)
        assert sw_state.zones["B"].avail_allocation.local.lr == 0.0

    def test_pool_above_entitlement_caps_at_full(self, sw_state):
        first_allocation(sw_state, 1, 25000.0)
        assert sw_state.perc_entitlement.local.hr == 1.0
        assert sw_state.avail_allocation.local.hr == pytest.approx(10000.0)

    def test_transfer_allocation_only_for_irrigation_areas(self, sw_state):
        """Full local HR opens the transfer system on the wet schedule (74% for high)."""
        first_allocation(sw_state, 1, 25000.0)
        assert sw_state.zones["A"].avail_allocation.transfer.hr == pytest.approx(740.0)
        assert sw_state.zones["B"].avail_allocation.transfer.hr == 0.0

    def test_later_year_opening_includes_hr_reserve(self, sw_state):
        """Year 2 opens on the pool plus the 2000 ML withheld last season."""
        sw_state.current_year = 2
        sw_state.reserves.hr[2] = 2000.0
        sw_state.reserves.op[2] = 3000.0

        first_allocation(sw_state, 2, 5000.0)

        assert sw_state.cumu_allocation.local.hr == pytest.approx(7000.0)
        assert sw_state.perc_entitlement.local.hr == pytest.approx(0.7)
        assert sw_state.zones["A"].avail_allocation.local.hr == pytest.approx(2100.0)

    def test_later_year_opening_capped_at_entitlement(self, sw_state):
        sw_state.current_year = 2
        sw_state.reserves.hr[2] = 10000.0
        first_allocation(sw_state, 2, 5000.0)
        assert sw_state.cumu_allocation.local.hr == pytest.approx(10000.0)
        assert sw_state.perc_entitlement.local.hr == 1.0

    def test_calc_allocation_builds_pool_from_dam_volume(self, sw_state):
        """Pool = 0.82 x (projected inflow + dam volume - minimum operating volume)."""
        sw_state.proj_inflow[1] = 1000.0
        calc_allocation(sw_state, {}, dam_vol=5024.0, rolling_dam_level=60.0)
        assert sw_state.shared_pool[1] == pytest.approx(0.82 * 5000.0)
        assert sw_state.perc_entitlement.local.hr == pytest.approx(0.41)


class TestLaterAllocation:
    """HR top-ups and LR gating after the first tick."""

    def test_hr_topped_up_to_entitlement(self, sw_state):
        first_allocation(sw_state, 1, 6000.0)
        sw_state.current_time = 2
        later_allocation(sw_state, 1, 2, 12000.0, {})
        assert sw_state.perc_entitlement.local.hr == 1.0
        assert sw_state.cumu_allocation.local.hr == pytest.approx(10000.0)
        assert sw_state.zones["A"].avail_allocation.local.hr == pytest.approx(3000.0)

    def test_pool_already_allocated_gives_no_top_up(self, sw_state):
        first_allocation(sw_state, 1, 6000.0)
        sw_state.current_time = 2
        later_allocation(sw_state, 1, 2, 3000.0, {})
        assert sw_state.perc_entitlement.local.hr == pytest.approx(0.6)

    def test_no_lr_in_first_year(self, sw_state):
        """Reserves are never withheld in year one, so LR cannot open."""
        first_allocation(sw_state, 1, 6000.0)
        sw_state.current_time = 2
        later_allocation(sw_state, 1, 2, 50000.0, {})
        assert sw_state.perc_entitlement.local.lr == 0.0

    def test_ordered_volume_stays_spent_after_top_up(self, sw_state):
        first_allocation(sw_state, 1, 6000.0)
        sw_state.current_time = 2
        later_allocation(sw_state, 1, 2, 6000.0, {"B": 500.0})
        zone_b = sw_state.zones["B"]
        # topped up to 65% (1300) less the 500 ordered
        assert zone_b.avail_allocation.local.hr == pytest.approx(800.0)

        sw_state.current_time = 3
        later_allocation(sw_state, 1, 3, 20000.0, {})
        # full 2000 HR less the 500 already ordered
        assert zone_b.avail_allocation.local.hr == pytest.approx(1500.0)

    def test_transfer_orders_drawn_first(self, sw_state):
        first_allocation(sw_state, 1, 25000.0)
        sw_state.current_time = 2
        local_orders = later_allocation(sw_state, 1, 2, 25000.0, {"A": 900.0})
        zone_a = sw_state.zones["A"]
        assert zone_a.orders.transfer[2] > 0.0
        assert local_orders["A"] == pytest.approx(900.0 - zone_a.orders.transfer[2])

    def test_unknown_zone_order_rejected(self, sw_state):
        first_allocation(sw_state, 1, 6000.0)
        sw_state.current_time = 2
        with pytest.raises(KeyError, match="unknown zone"):
            later_allocation(sw_state, 1, 2, 6000.0, {"nope": 10.0})

    @pytest.mark.parametrize("pools", [
        [6000.0, 9000.0, 30000.0, 1000.0],
        [0.0, 0.0, 500.0, 800.0],
        [40000.0, 40000.0, 40000.0, 40000.0],
    ])
    def test_percentages_stay_in_bounds(self, sw_state, pools):
        first_allocation(sw_state, 1, pools[0])
        update_catchment_stats(sw_state)
        for ts, pool in enumerate(pools[1:], start=2):
            sw_state.current_time = ts
            sw_state.shared_pool[ts] = pool
            later_allocation(sw_state, 1, ts, pool, {"A": 150.0, "B": 100.0})
            update_catchment_stats(sw_state)
            for _, volumes in sw_state.perc_entitlement.items():
                assert -1e-9 <= volumes.hr <= 1.0 + 1e-9
                assert -1e-9 <= volumes.lr <= 1.0 + 1e-9


class TestLowReliabilityAllocation:
    """LR opens once HR is full and next season's reserves are covered."""

    def _open_full_hr(self, sw_state, op_reserve=18560.0):
        sw_state.current_year = 2
        sw_state.reserves.hr[2] = 2000.0
        sw_state.reserves.op[2] = 3000.0
        first_allocation(sw_state, 2, 20000.0)
        # last week's reserves, carried into this week
        sw_state.ts_reserves.hr[1] = 10000.0
        sw_state.ts_reserves.op[1] = op_reserve
        sw_state.current_time = 2

    def test_lr_due_needs_full_hr_and_reserves(self, sw_state):
        sw_state.ts_reserves.hr[2] = 10000.0
        sw_state.ts_reserves.op[2] = sw_state.worst_case_loss
        assert lr_allocation_due(sw_state, 1.0, 0.0, 2)
        assert not lr_allocation_due(sw_state, 0.9, 0.0, 2)
        assert not lr_allocation_due(sw_state, 1.0, 1.0, 2)

        sw_state.ts_reserves.op[2] = sw_state.worst_case_loss - 1.0
        assert not lr_allocation_due(sw_state, 1.0, 0.0, 2)

    def test_lr_increment_from_pool_less_reserves(self, sw_state):
        """17000 pool - 3000 op - 2000 HR reserve - 10000 already allocated = 2000 ML LR."""
        self._open_full_hr(sw_state)

        later_allocation(sw_state, 2, 2, 17000.0, {})

        assert sw_state.ts_reserves.hr[2] == 10000.0
        assert sw_state.ts_reserves.op[2] == sw_state.worst_case_loss
        assert sw_state.cumu_allocation.local.lr == pytest.approx(2000.0)
        assert sw_state.perc_entitlement.local.lr == pytest.approx(0.4)
        assert sw_state.perc_entitlement.local.hr == 1.0

    def test_zones_receive_lr_in_proportion(self, sw_state):
        self._open_full_hr(sw_state)
        later_allocation(sw_state, 2, 2, 17000.0, {})

        lr = {z.zone_id: z.avail_allocation.local.lr for z in sw_state.zones}
        assert lr == pytest.approx({"A": 600.0, "B": 400.0, "ENV": 800.0, "URBAN": 200.0})

        # 17900 - 5000 reserved - (12000 allocated - 100 ordered) = 1000 ML more, 60% LR
        sw_state.current_time = 3
        later_allocation(sw_state, 2, 3, 17900.0, {"B": 100.0})
        assert sw_state.cumu_allocation.local.lr == pytest.approx(3000.0)
        assert sw_state.zones["A"].avail_allocation.local.lr == pytest.approx(900.0)
        assert sw_state.zones["B"].avail_allocation.local.lr == pytest.approx(500.0)

    def test_lr_capped_at_entitlement(self, sw_state):
        self._open_full_hr(sw_state)

        later_allocation(sw_state, 2, 2, 40000.0, {})

        assert sw_state.cumu_allocation.local.lr == pytest.approx(5000.0)
        assert sw_state.perc_entitlement.local.lr == 1.0
        assert sw_state.zones["A"].avail_allocation.local.lr == pytest.approx(1500.0)

        # nothing more once LR is full
        sw_state.current_time = 3
        later_allocation(sw_state, 2, 3, 60000.0, {})
        assert sw_state.cumu_allocation.local.lr == pytest.approx(5000.0)

    def test_lr_withheld_until_reserves_covered(self, sw_state):
        self._open_full_hr(sw_state, op_reserve=1000.0)

        later_allocation(sw_state, 2, 2, 40000.0, {})

        # no spare pool recorded this week, so no reserve and no LR
        assert sw_state.ts_reserves.op[2] == 0.0
        assert sw_state.cumu_allocation.local.lr == 0.0
        assert sw_state.perc_entitlement.local.lr == 0.0


class TestDrawZoneOrder:
    """Order draws: carryover first, then LR, then HR."""

    def test_draw_order(self, sw_state):
        zone = sw_state.zones["A"]
        zone.carryover_state = ReliabilityVolumes(hr=100.0, lr=50.0)
        zone.avail_allocation.local = ReliabilityVolumes(hr=300.0, lr=200.0)

        unmet = draw_zone_order(sw_state, zone, 400.0)

        assert unmet == 0.0
        assert zone.carryover_state.lr == 0.0
        assert zone.carryover_state.hr == 0.0
        assert zone.avail_allocation.local.lr == 0.0
        assert zone.avail_allocation.local.hr == pytest.approx(250.0)

    def test_carryover_never_increases(self, sw_state):
        zone = sw_state.zones["B"]
        zone.carryover_state = ReliabilityVolumes(hr=120.0, lr=80.0)
        zone.avail_allocation.local = ReliabilityVolumes(hr=500.0, lr=0.0)

        previous = zone.carryover_state.total()
        for order in (30.0, 0.0, 75.0, 60.0, 200.0):
            draw_zone_order(sw_state, zone, order)
            assert zone.carryover_state.total() <= previous
            previous = zone.carryover_state.total()

    def test_overrun_recorded_when_not_strict(self, sw_state):
        first_allocation(sw_state, 1, 6000.0)
        zone = sw_state.zones["A"]
        unmet = draw_zone_order(sw_state, zone, 2500.0, date(2010, 7, 8))

        assert unmet == pytest.approx(700.0)
        assert zone.avail_allocation.local.hr == 0.0
        assert sw_state.unmet_orders[-1]["zone_id"] == "A"
        assert sw_state.unmet_orders[-1]["unmet_ml"] == pytest.approx(700.0)

    def test_overrun_raises_when_strict(self):
        sw_state = make_sw_state(strict_overrun=True)
        first_allocation(sw_state, 1, 6000.0)
        with pytest.raises(AllocationOverrunError) as excinfo:
            draw_zone_order(sw_state, sw_state.zones["A"], 2500.0, date(2010, 7, 8))
        assert excinfo.value.zone_id == "A"
        assert excinfo.value.requested == 2500.0


class TestOtherAndEnvironmentalOrders:
    """Other-delivery and environmental draws."""

    def test_other_zones_order_everything(self, sw_state):
        first_allocation(sw_state, 1, 6000.0)
        released = calc_other_orders(sw_state)
        assert released == pytest.approx(600.0)
        assert sw_state.zones["URBAN"].available_local() == 0.0
        assert sw_state.avail_allocation.other.hr == 0.0

    def test_minimum_flow_reservoir_keeps_allocation(self):
        zones = make_catchment_zones() + [make_zone("MPF", "other", 1000.0, 0.0)]
        sw_state = make_sw_state(zones, mpf_reservoir="MPF")
        first_allocation(sw_state, 1, 5500.0)
        calc_other_orders(sw_state)
        assert sw_state.zones["MPF"].avail_allocation.local.hr == pytest.approx(500.0)

    def test_environmental_order_capped_by_holding(self, sw_state):
        first_allocation(sw_state, 1, 6000.0)
        remaining = draw_environmental_order(sw_state, 3000.0)
        assert remaining == pytest.approx(600.0)
        assert sw_state.env_orders[1] == pytest.approx(2400.0)
        assert sw_state.zones["ENV"].available_local() == 0.0
