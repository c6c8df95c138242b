# Carryover and reserve tracking for the catchment policy engine
# Layer 3: Simulation Engine
#
# Reserves: volume withheld from the shared pool each week so next season
# opens with HR entitlement and worst-case losses covered.
# Carryover: unused allocation rolled into the next season at season end,
# consumed ahead of the current season's allocation.

import logging

from catchment_policy.simulation.state import ReliabilityVolumes, SystemVolumes

logger = logging.getLogger(__name__)


def set_reserves(sw_state, hr, op):
    """Record reserves for the current week and for next year.

    Args:
        sw_state: SurfaceWaterState
        hr: Volume reserved for HR entitlements (ML)
        op: Volume reserved for dam operation (ML)
    """
    sw_state.check_year()
    next_year = sw_state.current_year + 1
    sw_state.reserves.hr[next_year] = hr
    sw_state.reserves.op[next_year] = op

    ts = sw_state.current_time
    sw_state.ts_reserves.hr[ts] = hr
    sw_state.ts_reserves.op[ts] = op


def calc_next_season_reserves(sw_state):
    """Project reserves for next season from this week's shared pool.

    In the first model year no reserves are withheld. After that, reserves
    stay at zero until cumulative HR allocation reaches full entitlement;
    once it has, the operational reserve is topped up first (capped at the
    worst-case loss) and the HR reserve second (capped at entitlement).
    A week that already holds enough reserve carries last week's values.
    """
    ts = sw_state.current_time
    op_reserve = 0.0
    hr_reserve = 0.0

    if sw_state.current_year > 1:
        cumu_hr = sw_state.cumu_allocation.local.hr
        if cumu_hr < sw_state.hr_entitlement:
            set_reserves(sw_state, hr_reserve, op_reserve)
            return

        upper_limit = sw_state.worst_case_loss + sw_state.hr_entitlement
        prev = max(ts - 1, 0)
        allocated_reserves = sw_state.ts_reserves.hr[prev] + sw_state.ts_reserves.op[prev]

        if allocated_reserves < upper_limit:
            spare_pool = sw_state.shared_pool[ts] - cumu_hr
            op_reserve = max(0.0, min(spare_pool, sw_state.worst_case_loss))
            hr_reserve = max(0.0, min(spare_pool - op_reserve, sw_state.hr_entitlement))
        else:
            hr_reserve = sw_state.ts_reserves.hr[prev]
            op_reserve = sw_state.ts_reserves.op[prev]

    set_reserves(sw_state, hr_reserve, op_reserve)


def reliability_carryover(sw_state):
    """Total catchment carryover into the current year, by reliability class."""
    return ReliabilityVolumes(
        hr=sw_state.reliability_carryover("hr"),
        lr=sw_state.reliability_carryover("lr"),
    )


def calc_carryover_state(sw_state):
    """Store the catchment's remaining within-season carryover for this year."""
    total = sum(z.carryover_state.total() for z in sw_state.zones)
    sw_state.carryover_state[sw_state.current_year] = total
    return total


def rollover_carryover(sw_state):
    """Roll unused allocation into next season's carryover at season end.

    For each zone with a non-zero entitlement that is not carryover-exempt,
    a fixed share of the unused local allocation is carried over: LR first,
    up to the zone's LR entitlement, the remainder as HR.

    Returns:
        Total carryover into next year (ML)
    """
    sw_state.check_year()
    next_year = sw_state.current_year + 1
    total = 0.0

    for zone in sw_state.zones:
        if zone.entitlement.is_empty() or zone.zone_id in sw_state.carryover_exempt:
            zone.carryover_state = ReliabilityVolumes()
            continue

        unused = max(0.0, zone.avail_allocation.local.total())
        carryover = sw_state.carryover_factor * unused
        lr_co = min(carryover, zone.entitlement.local.lr)
        hr_co = carryover - lr_co

        zone.yearly_carryover["hr"][next_year] = hr_co
        zone.yearly_carryover["lr"][next_year] = lr_co
        zone.carryover_state = ReliabilityVolumes(hr=hr_co, lr=lr_co)
        total += carryover

    # the rest of the season's allocation lapses
    for zone in sw_state.zones:
        zone.avail_allocation = SystemVolumes()

    sw_state.yearly_carryover[next_year] = total
    logger.info("Season %d carryover into next year: %.1f ML", sw_state.current_year, total)
    return total
