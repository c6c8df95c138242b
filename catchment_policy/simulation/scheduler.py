# Seasonal allocation scheduler for the catchment policy engine
# Layer 3: Simulation Engine
#
# Irregular clock: the surface-water policy runs on season start, every
# `timestep_days` after that, on the environmental evaluation dates and on
# season end. Three states:
#   uninitialized (next_run is None) -> waits for the season-start month/day
#   in season                        -> runs on scheduled ticks and special dates
#   off season                       -> keeps ticking until the next season start;
#                                       only carryover can be ordered
# Season end rolls carryover forward and moves the clock off season.

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional, Union

from catchment_policy.simulation.dam_release import DamRelease, DamReleaseContext, calc_dam_release
from catchment_policy.simulation.environment import calendar_event, run_environment
from catchment_policy.simulation.ledger import (
    calc_allocation,
    calc_other_orders,
    draw_carryover_orders,
    draw_environmental_order,
    draw_zone_order,
)
from catchment_policy.simulation.reserves import rollover_carryover
from catchment_policy.simulation.state import ENVIRONMENTAL

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotRun:
    """The scheduler did not fire on this date."""


@dataclass(frozen=True)
class Released:
    """The scheduler fired; daily dam release for the coming window.

    Args:
        volume: Daily release (ML/d)
        detail: Release components
    """
    volume: float
    detail: Optional[DamRelease] = field(default=None, compare=False)


SurfaceWaterResult = Union[NotRun, Released]


def _on(current_date, month_day):
    return (current_date.month, current_date.day) == tuple(month_day)


def is_evaluation_date(sw_state, current_date):
    """Environmental evaluation dates and the season's end date."""
    return calendar_event(current_date) is not None or current_date == sw_state.season_end_date


def _reset_weekly_series(sw_state):
    sw_state.current_time = 1
    sw_state.env_state.reset_season()
    for series in (sw_state.shared_pool, sw_state.proj_inflow, sw_state.env_orders,
                   sw_state.other_orders, sw_state.ts_reserves.hr, sw_state.ts_reserves.lr,
                   sw_state.ts_reserves.op, *sw_state.water_losses.values()):
        series[:] = 0.0
    for zone in sw_state.zones:
        zone.orders.reset()


def start_season(sw_state, current_date):
    """Open a season: schedule ticks, fix season dates, clear weekly series."""
    end_month, end_day = sw_state.season_end
    sw_state.season_end_date = date(current_date.year + 1, end_month, end_day)
    sw_state.first_release_date = date(current_date.year, *sw_state.first_release)
    sw_state.next_run = current_date + timedelta(days=sw_state.timestep_days)
    sw_state.off_season = False
    _reset_weekly_series(sw_state)

    logger.info("Season %d opened on %s, ends %s", sw_state.current_year, current_date,
                sw_state.season_end_date)


def end_season(sw_state):
    """Move the clock off season and advance the model year.

    Weekly ticks and evaluation dates keep firing until the next season
    start, counting time steps from 1 again.
    """
    logger.info("Season %d closed on %s after %d ticks", sw_state.current_year,
                sw_state.season_end_date, sw_state.current_time)
    sw_state.current_year += 1
    sw_state.off_season = True
    sw_state.season_end_date = None
    sw_state.first_release_date = None
    _reset_weekly_series(sw_state)


def check_run(sw_state, current_date):
    """Decide whether the policy model runs today, advancing the clock if so.

    Args:
        sw_state: SurfaceWaterState
        current_date: Date of the external daily tick

    Returns:
        True if the surface-water policy should run on this date
    """
    if sw_state.last_run == current_date:
        return False

    if sw_state.next_run is None or sw_state.off_season:
        if _on(current_date, sw_state.season_start):
            start_season(sw_state, current_date)
            sw_state.last_run = current_date
            return True
        if sw_state.next_run is None:
            return False

    if current_date == sw_state.next_run:
        sw_state.next_run += timedelta(days=sw_state.timestep_days)
        sw_state.current_time += 1
    elif is_evaluation_date(sw_state, current_date):
        sw_state.current_time += 1
    else:
        return False

    sw_state.last_run = current_date
    return True


def _environmental_available(sw_state):
    hr = lr = 0.0
    for zone in sw_state.zones.of_type(ENVIRONMENTAL):
        hr += zone.avail_allocation.local.hr + zone.carryover_state.hr
        lr += zone.avail_allocation.local.lr + zone.carryover_state.lr
    return hr, lr


def _regulation_orders(sw_state, local_orders):
    totals = {}
    for zone_id, order in local_orders.items():
        reg_zone = sw_state.zones[zone_id].regulation_zone
        totals[reg_zone] = totals.get(reg_zone, 0.0) + order
    return totals


def update_surface_water(sw_state, current_date, day_index, farm_orders, flow, dam_vol,
                         rolling_dam_level, proj_inflow, release_timeframe):
    """Run one surface-water policy tick if the scheduler fires.

    Args:
        sw_state: SurfaceWaterState
        current_date: Date of the external daily tick
        day_index: Position of current_date in the flow series
        farm_orders: Mapping zone-id -> ML ordered
        flow: Daily flow series at the reference gauge (ML/d)
        dam_vol: Current dam volume (ML)
        rolling_dam_level: Rolling average dam level (m)
        proj_inflow: Projected inflow for this tick (ML)
        release_timeframe: Days over which ordered water is released

    Returns:
        NotRun() if the scheduler did not fire, otherwise Released(volume)
    """
    if not check_run(sw_state, current_date):
        return NotRun()

    ts = sw_state.current_time
    sw_state.check_timestep()
    sw_state.proj_inflow[ts] = proj_inflow

    if sw_state.off_season:
        local_orders = draw_carryover_orders(sw_state, farm_orders, current_date)
    else:
        local_orders = calc_allocation(sw_state, farm_orders, dam_vol, rolling_dam_level,
                                       current_date)
    other_orders = calc_other_orders(sw_state)

    env_hr, env_lr = _environmental_available(sw_state)
    env_order = run_environment(
        sw_state.env_state, day_index, current_date, flow,
        other_orders / max(1, release_timeframe), env_hr, env_lr, dam_vol,
    )
    draw_environmental_order(sw_state, env_order, current_date)

    sw_state.total_water_orders += sum(local_orders.values()) + other_orders + env_order

    reservoir = None
    reservoir_allocation = float("inf")
    if sw_state.mpf_reservoir is not None and sw_state.mpf_reservoir in sw_state.zones:
        reservoir = sw_state.zones[sw_state.mpf_reservoir]
        reservoir_allocation = reservoir.available_local()

    release = calc_dam_release(DamReleaseContext(
        regulation_orders=_regulation_orders(sw_state, local_orders),
        other_orders=other_orders + env_order,
        dam_vol=dam_vol,
        proj_inflow=proj_inflow,
        release_timeframe=release_timeframe,
        month=current_date.month,
        reservoir_allocation=reservoir_allocation,
        transmission_zone=sw_state.transmission_zone,
        weir_zone=sw_state.weir_zone,
    ))

    if reservoir is not None and release.reservoir_used > 0.0:
        reservoir.orders.local[ts] += release.reservoir_used
        draw_zone_order(sw_state, reservoir, release.reservoir_used, current_date)

    # losses over the coming window reduce usable dam volume at the next tick
    if ts + 1 < len(sw_state.shared_pool):
        sw_state.water_losses["transmission"][ts + 1] = release.transmission_loss * release_timeframe
        sw_state.water_losses["operational"][ts + 1] = release.weir_loss * release_timeframe

    if current_date == sw_state.season_end_date:
        rollover_carryover(sw_state)
        end_season(sw_state)

    return Released(volume=release.release, detail=release)
