# Environmental flow rules for the catchment policy engine
# Layer 3: Simulation Engine
#
# Decides the environmental water order each time the scheduler fires.
# Rules are keyed on (month, day) through CALENDAR_EVENTS:
# - Winter low flow: keep the reference gauge at 120 ML/d (July 1, and June-November)
# - Freshes: on five check dates, look back over the flow record and, if no
#   block of consecutive days exceeded the target, order enough water for one block
#
# Orders never exceed the environmental allocation available (HR + LR).

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum

import numpy as np

logger = logging.getLogger(__name__)

WINTER_LOW_TARGET = 120.0          # ML/d at the reference gauge
WINTER_LOW_MONTHS = range(6, 12)   # June to November inclusive

DRY_DAM_VOLUME = 200000.0          # ML
MEDIAN_DAM_VOLUME = 250000.0       # ML


class CalendarEvent(Enum):
    """Named dates on which environmental rules are evaluated."""
    SEASON_START = "season_start"
    WINTER_FRESH = "winter_fresh"
    SPRING_FRESH = "spring_fresh"
    SUMMER_FRESH = "summer_fresh"
    LATE_SUMMER_FRESH = "late_summer_fresh"
    AUTUMN_FRESH = "autumn_fresh"


CALENDAR_EVENTS = {
    (7, 1): CalendarEvent.SEASON_START,
    (8, 25): CalendarEvent.WINTER_FRESH,
    (11, 25): CalendarEvent.SPRING_FRESH,
    (2, 1): CalendarEvent.SUMMER_FRESH,
    (3, 16): CalendarEvent.LATE_SUMMER_FRESH,
    (5, 1): CalendarEvent.AUTUMN_FRESH,
}


@dataclass(frozen=True)
class FreshRule:
    """Consecutive-day flow target checked on one calendar date.

    Args:
        window_start: (month, day) the lookback window opens
        block_days: Consecutive days that make one event
        target: Flow that each day must exceed (ML/d)
        wet_only: Only checked when the dam is in the wet class
    """
    window_start: tuple
    block_days: int
    target: float
    wet_only: bool = False


FRESH_RULES = {
    CalendarEvent.WINTER_FRESH: FreshRule((7, 1), 4, 1500.0),
    CalendarEvent.SPRING_FRESH: FreshRule((9, 1), 4, 1500.0),
    CalendarEvent.SUMMER_FRESH: FreshRule((12, 1), 6, 100.0),
    CalendarEvent.LATE_SUMMER_FRESH: FreshRule((2, 2), 6, 100.0),
    CalendarEvent.AUTUMN_FRESH: FreshRule((3, 17), 4, 1500.0, wet_only=True),
}


def calendar_event(current_date):
    """Named event for a date, or None on an ordinary day."""
    return CALENDAR_EVENTS.get((current_date.month, current_date.day))


def classify_climate(dam_vol):
    """Dam-volume climate class: 'dry', 'median' or 'wet'."""
    if dam_vol <= DRY_DAM_VOLUME:
        return "dry"
    if dam_vol <= MEDIAN_DAM_VOLUME:
        return "median"
    return "wet"


def count_events(above_target, block_days):
    """Count runs of consecutive True values at least block_days long.

    Each qualifying run counts once however long it continues, including a
    run still open at the end of the sequence.
    """
    events = 0
    run = 0
    for flag in above_target:
        if flag:
            run += 1
            if run == block_days:
                events += 1
        else:
            run = 0
    return events


def _window_start_date(current_date, month_day):
    start = date(current_date.year, *month_day)
    if start > current_date:
        start = date(current_date.year - 1, *month_day)
    return start


def lookback_flows(flow, day_index, current_date, month_day):
    """Flow record from a threshold date up to and including the current day.

    Args:
        flow: Daily flow series at the reference gauge (ML/d)
        day_index: Position of current_date in the flow series
        current_date: Date of the tick
        month_day: (month, day) the window opens

    Returns:
        numpy array of daily flows
    """
    n_days = (current_date - _window_start_date(current_date, month_day)).days
    start = max(0, day_index - n_days)
    return np.asarray(flow[start:day_index + 1], dtype=float)


def fresh_shortfall(flows, rule):
    """Volume needed to lift the best block in the window to the target.

    Returns:
        Shortfall (ML); zero when a qualifying event already occurred
    """
    if count_events(flows > rule.target, rule.block_days) > 0:
        return 0.0

    required = rule.block_days * rule.target
    if len(flows) < rule.block_days:
        best_block = flows.sum()
    else:
        block_sums = np.convolve(flows, np.ones(rule.block_days), mode="valid")
        best_block = block_sums.max()
    return max(0.0, required - best_block)


def winter_low_deficit(flow_today, other_releases):
    return max(0.0, WINTER_LOW_TARGET - flow_today - other_releases)


def run_environment(env_state, day_index, current_date, flow, other_releases,
                    avail_hr, avail_lr, dam_vol):
    """Environmental water order for this tick.

    Args:
        env_state: EnvironmentState, updated in place
        day_index: Position of current_date in the flow series
        current_date: Date of the tick
        flow: Daily flow series at the reference gauge (ML/d)
        other_releases: Other-delivery releases passing the gauge (ML/d)
        avail_hr: Environmental HR allocation available (ML)
        avail_lr: Environmental LR allocation available (ML)
        dam_vol: Current dam volume (ML)

    Returns:
        Environmental water order (ML)
    """
    available = max(0.0, avail_hr + avail_lr)
    event = calendar_event(current_date)
    order = 0.0

    deficit = winter_low_deficit(float(flow[day_index]), other_releases)
    if event is CalendarEvent.SEASON_START:
        order = deficit
    elif current_date.month in WINTER_LOW_MONTHS and deficit > 0.0:
        if env_state.season_order <= env_state.fixed_annual_losses:
            order = deficit
        else:
            order = min(deficit, available)

    rule = FRESH_RULES.get(event)
    if rule is not None:
        climate = classify_climate(dam_vol)
        if not rule.wet_only or climate == "wet":
            flows = lookback_flows(flow, day_index, current_date, rule.window_start)
            shortfall = fresh_shortfall(flows, rule)
            if shortfall > 0.0:
                order += min(shortfall, max(0.0, available - order))
                logger.debug("%s shortfall %.1f ML on %s (%s year)", event.value, shortfall,
                             current_date, climate)

    order = min(max(order, 0.0), available)
    env_state.water_order = order
    env_state.season_order += order
    return order
