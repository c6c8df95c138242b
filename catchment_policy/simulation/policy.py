# Policy tick entry point for the catchment policy engine
# Layer 3: Simulation Engine
#
# update_policy() is called once per external daily tick. It runs the
# surface-water policy (when the scheduler fires) and the groundwater annual
# clock, then reports the allocations the farm model can draw on next tick.

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

import pandas as pd

from catchment_policy.simulation.groundwater import update_groundwater
from catchment_policy.simulation.scheduler import NotRun, Released, update_surface_water
from catchment_policy.simulation.state import FarmAllocation, approx_equal

logger = logging.getLogger(__name__)


@dataclass
class PolicyResult:
    """Output of one policy tick.

    Args:
        release: NotRun() or Released(volume) from the surface-water scheduler
        farm_allocations: Zone-id -> FarmAllocation for the next farm decision
        gw_log: Groundwater annual log row when the annual clock fired
    """
    release: Union[NotRun, Released]
    farm_allocations: Dict[str, FarmAllocation] = field(default_factory=dict)
    gw_log: Optional[dict] = None

    @property
    def ran(self):
        return isinstance(self.release, Released)


def update_policy(policy_state, current_date, day_index, farm_orders, gw_orders, dam_vol,
                  rolling_dam_level, flow, proj_inflow, bore_levels, release_timeframe=None):
    """Run the policy engine for one daily tick.

    Args:
        policy_state: PolicyState aggregate, updated in place
        current_date: Date of the tick
        day_index: Position of current_date in the flow series
        farm_orders: Zone-id -> surface water ordered (ML)
        gw_orders: Zone-id -> groundwater extracted (ML)
        dam_vol: Dam volume (ML)
        rolling_dam_level: Rolling average dam level (m)
        flow: Daily flow series at the reference gauge (ML/d)
        proj_inflow: Projected inflow for this tick (ML)
        bore_levels: Trigger-bore id -> observed level
        release_timeframe: Release window in days (defaults to the state's setting)

    Returns:
        PolicyResult
    """
    if release_timeframe is None:
        release_timeframe = policy_state.release_timeframe

    sw_state = policy_state.sw_state
    gw_state = policy_state.gw_state

    gw_state.sw_perc_entitlement = sw_state.perc_entitlement.local.hr

    release = update_surface_water(
        sw_state, current_date, day_index, farm_orders, flow, dam_vol,
        rolling_dam_level, proj_inflow, release_timeframe,
    )
    gw_log = update_groundwater(gw_state, current_date, gw_orders, bore_levels)

    if isinstance(release, Released):
        policy_state.tick_log.append(_tick_row(policy_state, current_date, release))

    return PolicyResult(
        release=release,
        farm_allocations=get_avail_farm_allocations(policy_state),
        gw_log=gw_log,
    )


def _tick_row(policy_state, current_date, release):
    sw_state = policy_state.sw_state
    detail = release.detail
    return {
        "date": current_date,
        "year": sw_state.current_year,
        "timestep": sw_state.current_time,
        "hr_perc": sw_state.perc_entitlement.local.hr,
        "lr_perc": sw_state.perc_entitlement.local.lr,
        "transfer_perc": sw_state.transfer.percentage,
        "total_allocated_ml": sw_state.total_allocated,
        "total_orders_ml": sw_state.total_water_orders,
        "env_order_ml": sw_state.env_state.water_order,
        "env_season_order_ml": sw_state.env_state.season_order,
        "release_ml_per_day": release.volume,
        "mpf_release_ml_per_day": detail.mpf_release if detail else 0.0,
    }


def get_avail_farm_allocations(policy_state):
    """Surface and groundwater each farm zone may order on the next tick.

    Surface water = local + transfer allocation + carryover, scaled by the
    surface-water cap. Groundwater = lesser of the capped entitlement and the
    licence, less volume already used.

    Returns:
        Mapping zone-id -> FarmAllocation
    """
    sw_state = policy_state.sw_state
    gw_zones = policy_state.gw_state.zones
    allocations = {}

    for zone in sw_state.farm_zones():
        gw_avail = 0.0
        if zone.zone_id in gw_zones:
            gw = gw_zones[zone.zone_id]
            if gw.allocation - gw.used < 0.0 and not approx_equal(gw.allocation, gw.used):
                logger.warning("Zone %s used %.3f ML groundwater against a %.3f ML licence",
                               zone.zone_id, gw.used, gw.allocation)
                gw.used = gw.allocation

            gw_avail = min(gw.entitlement * policy_state.gw_cap - gw.used, gw.allocation - gw.used)
            gw_avail = 0.0 if approx_equal(gw_avail, 0.0) else max(0.0, gw_avail)

        avail = zone.avail_allocation
        allocations[zone.zone_id] = FarmAllocation(
            sw_hr=(avail.local.hr + avail.transfer.hr + zone.carryover_state.hr) * policy_state.sw_cap,
            sw_lr=(avail.local.lr + avail.transfer.lr + zone.carryover_state.lr) * policy_state.sw_cap,
            gw_hr=gw_avail,
            gw_lr=0.0,
        )

    return allocations


def get_dam_extraction(policy_state, current_date):
    """Historical extraction (ML) for a date; zero when not in the schedule."""
    extractions = policy_state.dam_extractions
    if extractions is None:
        return 0.0
    try:
        return float(extractions.loc[pd.Timestamp(current_date)])
    except KeyError:
        return 0.0
