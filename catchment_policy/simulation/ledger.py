# Allocation ledger for the catchment policy engine
# Layer 3: Simulation Engine
#
# Tracks entitlements, cumulative and available allocation, and percentage of
# entitlement per reliability class for each water system.
#
# Each scheduler tick:
#   shared pool = utility share x (projected inflow + usable dam volume)
#   first tick of season -> first_allocation (HR only)
#   later ticks          -> later_allocation:
#       1. farm orders drawn from transfer-system HR where the zone has it
#       2. HR top-up from the shared pool until 100%
#       3. LR allocation once HR is full and next season's reserves are met
#   then orders are drawn from carryover, then LR, then HR.

import logging

from catchment_policy.exceptions import AllocationOverrunError
from catchment_policy.policies.transfer_allocation import advance, start_season
from catchment_policy.simulation.reserves import (
    calc_carryover_state,
    calc_next_season_reserves,
    reliability_carryover,
)
from catchment_policy.simulation.state import (
    ENVIRONMENTAL,
    OTHER,
    ReliabilityVolumes,
    approx_equal,
    snap_fraction,
)

logger = logging.getLogger(__name__)


def prop_subtract(low, high, demand):
    """Cascade a demand through a low-priority pool, then a high-priority pool.

    The low-priority pool is consumed first; the shortfall is taken from the
    high-priority pool; anything left is returned as unmet demand. Results
    within tolerance of zero are snapped to exactly zero.

    Args:
        low: Low-priority pool volume, e.g. LR allocation (ML)
        high: High-priority pool volume, e.g. HR allocation (ML)
        demand: Volume to draw (ML)

    Returns:
        Tuple of (remaining_low, remaining_high, unmet_demand)

    Example:
        >>> prop_subtract(100.0, 50.0, 80.0)
        (20.0, 50.0, 0.0)
        >>> prop_subtract(30.0, 20.0, 60.0)
        (0.0, 0.0, 10.0)
    """
    if approx_equal(demand, 0.0):
        return low, high, 0.0

    if low <= 0.0 and high <= 0.0:
        return low, high, demand

    leftover = demand
    if low > 0.0:
        if low < leftover and not approx_equal(low, leftover):
            leftover -= low
            low = 0.0
        else:
            low -= leftover
            leftover = 0.0

    if leftover > 0.0 and high > 0.0:
        if high < leftover and not approx_equal(high, leftover):
            leftover -= high
            high = 0.0
        else:
            high -= leftover
            leftover = 0.0

    low = 0.0 if approx_equal(low, 0.0) else max(low, 0.0)
    high = 0.0 if approx_equal(high, 0.0) else max(high, 0.0)
    leftover = 0.0 if approx_equal(leftover, 0.0) else leftover

    return low, high, leftover


def update_carryover_state(zone, order):
    """Draw a zone's water order from its carryover first.

    Args:
        zone: Zone placing the order
        order: Volume ordered this time step (ML)

    Returns:
        Volume still to be drawn from the season's allocation (ML)
    """
    carryover = zone.carryover_state
    if order > 0.0 and (carryover.lr > 0.0 or carryover.hr > 0.0):
        carryover.lr, carryover.hr, leftover = prop_subtract(carryover.lr, carryover.hr, order)
        return leftover
    return order


def is_irrigation_area(sw_state, zone):
    """True when the zone belongs to a district supplied by the transfer system."""
    return zone.water_system in sw_state.irrigation_areas


def calc_allocation(sw_state, farm_orders, dam_vol, rolling_dam_level, current_date=None):
    """Compute this tick's shared pool and update allocations.

    Args:
        sw_state: SurfaceWaterState
        farm_orders: Mapping zone-id -> ML ordered this tick
        dam_vol: Current dam volume (ML)
        rolling_dam_level: Rolling average dam level (m)
        current_date: Date of the tick, used in overrun diagnostics

    Returns:
        Mapping zone-id -> ML still to be supplied from the local system
        after transfer-system allocation has been drawn
    """
    ts = sw_state.current_time
    sw_state.check_timestep()

    river_loss = sum(series[ts] for series in sw_state.water_losses.values())
    usable_dam_vol = max(0.0, dam_vol - sw_state.min_op_vol - river_loss)

    share = sw_state.shared_utility_share
    pool = max(0.0, share * sw_state.proj_inflow[ts] + share * usable_dam_vol)
    sw_state.shared_pool[ts] = pool

    if ts == 1:
        first_allocation(sw_state, sw_state.current_year, pool)
        local_orders = {}
    else:
        local_orders = later_allocation(sw_state, sw_state.current_year, ts, pool, farm_orders, current_date)

    update_catchment_stats(sw_state)
    logger.debug(
        "ts=%d pool=%.1f HR=%.4f LR=%.4f (rolling dam level %.2f)",
        ts, pool, sw_state.perc_entitlement.local.hr, sw_state.perc_entitlement.local.lr,
        rolling_dam_level,
    )
    return local_orders


def first_allocation(sw_state, year, pool):
    """Opening HR allocation for the season.

    HR allocation = min(shared pool + reserve carried into this year, HR entitlement).
    LR allocation starts at zero. Every zone receives HR in proportion to
    its entitlement; irrigation areas also receive their transfer-system share.
    """
    sw_state.total_water_orders = 0.0
    sw_state.avail_allocation.local.lr = 0.0
    sw_state.cumu_allocation.local.lr = 0.0
    sw_state.perc_entitlement.local.lr = 0.0

    reserve = sw_state.reserves.hr[year] if year > 1 else 0.0
    hr_alloc = min(pool + reserve, sw_state.hr_entitlement)

    sw_state.avail_allocation.local.hr = hr_alloc
    sw_state.total_allocated = hr_alloc
    sw_state.cumu_allocation.local.hr = hr_alloc
    hr_perc = hr_alloc / sw_state.hr_entitlement if sw_state.hr_entitlement > 0 else 0.0
    sw_state.perc_entitlement.local.hr = snap_fraction(hr_perc)

    transfer_perc = start_season(
        sw_state.transfer,
        approx_equal(sw_state.perc_entitlement.local.hr, 1.0),
        sw_state.current_time,
    )

    for zone in sw_state.zones:
        avail_hr = zone.entitlement.local.hr * sw_state.perc_entitlement.local.hr
        zone.avail_allocation.local = ReliabilityVolumes(hr=avail_hr, lr=0.0)
        zone.allocated_to_date.local = ReliabilityVolumes(hr=avail_hr, lr=0.0)

        transfer_hr = 0.0
        if is_irrigation_area(sw_state, zone):
            transfer_hr = zone.entitlement.transfer.hr * transfer_perc
        zone.avail_allocation.transfer = ReliabilityVolumes(hr=transfer_hr, lr=0.0)
        zone.allocated_to_date.transfer = ReliabilityVolumes(hr=transfer_hr, lr=0.0)

        zone.orders.reset()


def _draw_transfer_orders(sw_state, ts, farm_orders):
    """Satisfy farm orders from transfer-system HR first.

    Returns:
        Mapping zone-id -> residual order for the local system
    """
    residual = {}
    for zone_id, order in farm_orders.items():
        if zone_id not in sw_state.zones:
            raise KeyError(f"Water order for unknown zone '{zone_id}'")
        zone = sw_state.zones[zone_id]
        order = max(0.0, order)

        if order > 0.0 and is_irrigation_area(sw_state, zone):
            available = max(0.0, zone.avail_allocation.transfer.hr)
            drawn = min(order, available)
            zone.avail_allocation.transfer.hr = available - drawn
            zone.orders.transfer[ts] = drawn
            order -= drawn

        residual[zone_id] = order
    return residual


def _set_zone_allocation(zone, hr_perc, lr_perc):
    """Raise a zone's local allocation to the catchment percentages.

    The increase over what was allocated to date is credited to the zone's
    available allocation, so volume already ordered stays spent.
    """
    new_hr = zone.entitlement.local.hr * hr_perc
    new_lr = zone.entitlement.local.lr * lr_perc
    to_date = zone.allocated_to_date.local

    zone.avail_allocation.local.hr += max(0.0, new_hr - to_date.hr)
    zone.avail_allocation.local.lr += max(0.0, new_lr - to_date.lr)
    zone.allocated_to_date.local = ReliabilityVolumes(hr=max(new_hr, to_date.hr), lr=max(new_lr, to_date.lr))


def _set_zone_transfer_allocation(sw_state, zone, ts, transfer_perc):
    """Transfer-system HR for irrigation areas: entitlement share less use to date."""
    if not is_irrigation_area(sw_state, zone):
        return
    allocated = zone.entitlement.transfer.hr * transfer_perc
    used = zone.orders.transfer[1:ts + 1].sum()
    zone.avail_allocation.transfer.hr = max(0.0, allocated - used)
    zone.allocated_to_date.transfer.hr = allocated


def lr_allocation_due(sw_state, hr_perc, lr_perc, ts):
    """LR is allocated only once HR is full and this week's reserves are met."""
    hr_met = approx_equal(hr_perc, 1.0)
    reserves_met = (
        sw_state.ts_reserves.hr[ts] >= sw_state.hr_entitlement
        and sw_state.ts_reserves.op[ts] >= sw_state.worst_case_loss
    )
    return hr_met and reserves_met and lr_perc < 1.0


def later_allocation(sw_state, year, ts, pool, farm_orders, current_date=None):
    """Allocation for every tick after the first of the season.

    Args:
        sw_state: SurfaceWaterState
        year: Model year count (not calendar year)
        ts: Within-season time step
        pool: Shared pool volume for this tick (ML)
        farm_orders: Mapping zone-id -> ML ordered this tick
        current_date: Date of the tick, used in overrun diagnostics

    Returns:
        Mapping zone-id -> residual local-system order (ML)

    Raises:
        AllocationOverrunError: If strict overrun checking is enabled and a
            zone orders more than it has available
    """
    local_orders = _draw_transfer_orders(sw_state, ts, farm_orders)

    hr_perc = sw_state.perc_entitlement.local.hr
    lr_perc = sw_state.perc_entitlement.local.lr
    total_water_orders = sw_state.total_water_orders + sum(local_orders.values())

    if hr_perc < 1.0 and sw_state.hr_entitlement > 0:
        allocated_hr = sw_state.cumu_allocation.local.hr
        hr_alloc = max(0.0, pool - (allocated_hr - total_water_orders))
        if allocated_hr + hr_alloc > sw_state.hr_entitlement:
            hr_alloc = sw_state.hr_entitlement - allocated_hr

        updated_hr = allocated_hr + hr_alloc
        sw_state.cumu_allocation.local.hr = updated_hr
        hr_perc = snap_fraction(updated_hr / sw_state.hr_entitlement)

    transfer_perc = advance(sw_state.transfer, ts)
    for zone in sw_state.zones:
        _set_zone_allocation(zone, hr_perc, lr_perc)
        _set_zone_transfer_allocation(sw_state, zone, ts, transfer_perc)

    calc_next_season_reserves(sw_state)

    if sw_state.lr_entitlement > 0 and lr_allocation_due(sw_state, hr_perc, lr_perc, ts):
        cumu = sw_state.cumu_allocation.local
        total_alloc = cumu.hr + cumu.lr
        lr_alloc = max(
            0.0,
            pool - sw_state.reserves.op[year] - sw_state.reserves.hr[year]
            - (total_alloc - total_water_orders),
        )
        if cumu.lr + lr_alloc > sw_state.lr_entitlement:
            lr_alloc = sw_state.lr_entitlement - cumu.lr

        cumu.lr += lr_alloc
        lr_perc = snap_fraction(cumu.lr / sw_state.lr_entitlement)

        for zone in sw_state.zones:
            _set_zone_allocation(zone, hr_perc, lr_perc)

    sw_state.perc_entitlement.local.hr = hr_perc
    sw_state.perc_entitlement.local.lr = lr_perc

    for zone_id, order in local_orders.items():
        zone = sw_state.zones[zone_id]
        zone.orders.local[ts] = order
        draw_zone_order(sw_state, zone, order, current_date)

    return local_orders


def draw_zone_order(sw_state, zone, order, current_date=None):
    """Subtract an order from a zone: carryover, then LR, then HR.

    Returns:
        Unmet volume (ML); zero unless the zone over-ordered
    """
    available = zone.available_local()
    leftover = update_carryover_state(zone, order)

    local = zone.avail_allocation.local
    local.lr, local.hr, leftover = prop_subtract(local.lr, local.hr, leftover)

    if leftover > 0.0:
        if sw_state.strict_overrun:
            raise AllocationOverrunError(
                zone.zone_id, order, available, sw_state.current_time, current_date
            )
        logger.warning(
            "Allocation overrun for zone %s at time step %d (%s): ordered %.3f ML, "
            "available %.3f ML, unmet %.3f ML",
            zone.zone_id, sw_state.current_time, current_date, order, available, leftover,
        )
        sw_state.unmet_orders.append({
            "zone_id": zone.zone_id,
            "timestep": sw_state.current_time,
            "date": current_date,
            "requested_ml": order,
            "available_ml": available,
            "unmet_ml": leftover,
        })
    return leftover


def update_catchment_stats(sw_state):
    """Refresh catchment totals, percentages and carryover after allocation."""
    cumu = sw_state.cumu_allocation.local
    sw_state.total_allocated = cumu.hr + cumu.lr

    hr_ent = sw_state.hr_entitlement
    lr_ent = sw_state.lr_entitlement
    hr_perc = snap_fraction(cumu.hr / hr_ent) if hr_ent > 0 else 0.0
    lr_perc = snap_fraction(cumu.lr / lr_ent) if lr_ent > 0 else 0.0
    sw_state.perc_entitlement.local = ReliabilityVolumes(hr=hr_perc, lr=lr_perc)

    # environmental and other-delivery zones share the local pool
    sw_state.perc_entitlement.environment = ReliabilityVolumes(hr=hr_perc, lr=lr_perc)
    sw_state.perc_entitlement.other = ReliabilityVolumes(hr=hr_perc, lr=lr_perc)
    sw_state.perc_entitlement.transfer = ReliabilityVolumes(hr=sw_state.transfer.percentage, lr=0.0)

    carryover = reliability_carryover(sw_state)
    sw_state.adj_perc_entitlement.local = ReliabilityVolumes(
        hr=cumu.hr / (hr_ent + carryover.hr) if hr_ent + carryover.hr > 0 else 0.0,
        lr=cumu.lr / (lr_ent + carryover.lr) if lr_ent + carryover.lr > 0 else 0.0,
    )

    _sum_system_allocations(sw_state)
    calc_carryover_state(sw_state)


def draw_carryover_orders(sw_state, farm_orders, current_date=None):
    """Charge farm orders between seasons, when only carryover can be ordered.

    No allocation is announced and the transfer system is closed, so every
    order goes straight to the zone's local ledger.

    Returns:
        Mapping zone-id -> local-system order (ML)
    """
    ts = sw_state.current_time
    local_orders = {}
    for zone_id, order in farm_orders.items():
        if zone_id not in sw_state.zones:
            raise KeyError(f"Water order for unknown zone '{zone_id}'")
        zone = sw_state.zones[zone_id]
        order = max(0.0, order)
        zone.orders.local[ts] = order
        draw_zone_order(sw_state, zone, order, current_date)
        local_orders[zone_id] = order

    _sum_system_allocations(sw_state)
    return local_orders


def _sum_system_allocations(sw_state):
    """Catchment available allocation per system from the zone records."""
    totals = {
        "local": ReliabilityVolumes(),
        "transfer": ReliabilityVolumes(),
        ENVIRONMENTAL: ReliabilityVolumes(),
        OTHER: ReliabilityVolumes(),
    }
    for zone in sw_state.zones:
        local = zone.avail_allocation.local
        totals["local"].hr += local.hr
        totals["local"].lr += local.lr
        totals["transfer"].hr += zone.avail_allocation.transfer.hr
        if zone.zone_type in (ENVIRONMENTAL, OTHER):
            totals[zone.zone_type].hr += local.hr
            totals[zone.zone_type].lr += local.lr

    sw_state.avail_allocation.local = totals["local"]
    sw_state.avail_allocation.transfer = totals["transfer"]
    sw_state.avail_allocation.environment = totals[ENVIRONMENTAL]
    sw_state.avail_allocation.other = totals[OTHER]


def calc_other_orders(sw_state):
    """Other-delivery zones order their whole available allocation each tick.

    The reservoir zone that funds minimum passing flows is left untouched.

    Returns:
        Total volume ordered by other-delivery zones (ML)
    """
    ts = sw_state.current_time
    released = 0.0

    for zone in sw_state.zones.of_type(OTHER):
        if zone.zone_id == sw_state.mpf_reservoir:
            continue
        order = zone.available_local()
        if order <= 0.0:
            continue
        zone.orders.local[ts] += order
        zone.carryover_state = ReliabilityVolumes()
        zone.avail_allocation.local = ReliabilityVolumes()
        released += order

    sw_state.other_orders[ts] = released
    _sum_system_allocations(sw_state)
    return released


def draw_environmental_order(sw_state, order, current_date=None):
    """Deduct an environmental order from the environmental zones in turn.

    Returns:
        Volume that could not be drawn (ML)
    """
    ts = sw_state.current_time
    remaining = order
    for zone in sw_state.zones.of_type(ENVIRONMENTAL):
        if remaining <= 0.0:
            break
        drawn = min(remaining, zone.available_local())
        if drawn <= 0.0:
            continue
        zone.orders.local[ts] += drawn
        draw_zone_order(sw_state, zone, drawn, current_date)
        remaining -= drawn

    sw_state.env_orders[ts] = order - remaining
    _sum_system_allocations(sw_state)
    return 0.0 if approx_equal(remaining, 0.0) else remaining
