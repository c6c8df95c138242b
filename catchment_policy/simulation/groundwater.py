# Groundwater licensing and restriction for the catchment policy engine
# Layer 3: Simulation Engine
#
# Annual clock keyed on season start and season end (month, day):
#   season start: trigger-bore levels -> allocation proportion -> licence volume
#   season end:   licence recomputed, carryover = min(cap x licence, licence - used),
#                 usage / proportion / licence counters reset, year advances
# Groundwater orders add to per-zone use on every call, independent of the clock.

import logging

from catchment_policy.policies.restriction_policies import RestrictionContext
from catchment_policy.simulation.state import approx_equal

logger = logging.getLogger(__name__)


def _on(current_date, month_day):
    return (current_date.month, current_date.day) == tuple(month_day)


def add_orders(gw_state, gw_orders):
    """Add groundwater orders (zone-id -> ML) to each zone's cumulative use."""
    for zone_id, volume in gw_orders.items():
        gw_state.zones[zone_id].used += volume


def set_trigger_levels(gw_state):
    """Copy observed bore levels onto every zone monitored by that bore."""
    for bore_id, level in gw_state.gw_levels.items():
        zones = gw_state.zones_for_bore(bore_id)
        if not zones:
            logger.debug("Bore %s is not a trigger bore for any zone", bore_id)
        for zone in zones:
            zone.trigger_level = level


def lookup_proportion(table, level):
    """Allocation proportion for an observed bore level.

    Uses the deepest tabulated depth at or below the observed level; if every
    tabulated depth lies above it, the shallowest of those is used.

    Args:
        table: DataFrame with Depth and Proportion columns
        level: Observed trigger-bore level

    Returns:
        Allocation proportion (fraction of entitlement)
    """
    at_or_below = table.loc[table["Depth"] <= level, "Depth"]
    if len(at_or_below) > 0:
        depth = at_or_below.max()
    else:
        depth = table.loc[table["Depth"] > level, "Depth"].min()
    return float(table.loc[table["Depth"] == depth, "Proportion"].iloc[0])


def set_allocation_prop(gw_state, table_name):
    """Set each zone's allocation proportion from its trigger bore's table."""
    for bore_id, level in gw_state.gw_levels.items():
        zones = gw_state.zones_for_bore(bore_id)
        if not zones:
            continue
        proportion = lookup_proportion(gw_state.trigger_tables[bore_id][table_name], level)
        for zone in zones:
            zone.proportion = proportion


def restriction(gw_state):
    """Apply the configured restriction ruleset on season start."""
    set_trigger_levels(gw_state)
    decision = gw_state.restriction.decide(RestrictionContext(
        sw_perc_entitlement=gw_state.sw_perc_entitlement,
        drought_count=gw_state.drought_count,
    ))
    gw_state.drought_count = decision.drought_count
    set_allocation_prop(gw_state, decision.table_name)
    logger.info("Year %d groundwater restriction '%s' using %s table (%s, drought count %d)",
                gw_state.current_year, gw_state.restriction.name, decision.table_name,
                decision.decision_reason, decision.drought_count)
    return decision


def licence(gw_state, season_end=False):
    """Set licence volumes; at season end also compute carryover.

    Licence = entitlement x proportion, plus carryover from the previous
    year after the first model year. Carryover is capped at a share of the
    licence and by the volume left unused.
    """
    for zone in gw_state.zones:
        zone.allocation = zone.entitlement * zone.proportion
        if gw_state.current_year > 1:
            zone.allocation += zone.carryover

        if season_end:
            if gw_state.carryover_period <= 0:
                zone.carryover = 0.0
                continue
            carryover = min(zone.allocation * gw_state.max_carryover_perc, zone.allocation - zone.used)
            zone.carryover = 0.0 if approx_equal(carryover, 0.0) else carryover


def build_log(gw_state):
    """Annual groundwater summary row."""
    zones = list(gw_state.zones)
    total_alloc = sum(z.allocation for z in zones)
    total_ent = sum(z.entitlement for z in zones)
    row = {
        "year": gw_state.current_year,
        "sw_perc_entitlement": gw_state.sw_perc_entitlement,
        "alloc_ratio": total_alloc / total_ent if total_ent > 0 else 0.0,
    }
    for bore_id in gw_state.log_bores:
        row[f"initial_level_{bore_id}"] = gw_state.initial_gw_levels.get(bore_id, float("nan"))
    row["total_allocation"] = total_alloc
    row["total_used"] = sum(z.used for z in zones)
    row["total_carryover"] = sum(z.carryover for z in zones)
    return row


def update_groundwater(gw_state, current_date, gw_orders, gw_levels):
    """Advance the groundwater state machine for one day.

    Args:
        gw_state: GroundwaterState
        current_date: Date of the daily tick
        gw_orders: Mapping zone-id -> ML extracted
        gw_levels: Mapping bore-id -> observed level

    Returns:
        Annual log row on season start or season end, otherwise None
    """
    add_orders(gw_state, gw_orders)
    gw_state.gw_levels = dict(gw_levels)

    if _on(current_date, gw_state.season_start):
        restriction(gw_state)
        licence(gw_state)
        gw_state.initial_gw_levels = dict(gw_levels)
        row = build_log(gw_state)
        gw_state.annual_log.append(row)
        return row

    if _on(current_date, gw_state.season_end):
        licence(gw_state, season_end=True)
        row = build_log(gw_state)
        gw_state.annual_log.append(row)
        gw_state.current_year += 1
        for zone in gw_state.zones:
            zone.allocation = 0.0
            zone.proportion = 0.0
            zone.used = 0.0
        return row

    return None
