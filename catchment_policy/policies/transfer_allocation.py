# Interstate-transfer allocation regimes for the catchment policy engine
# Layer 2: Design configuration
#
# The transfer system announces its own seasonal allocation percentage.
# Regime is fixed at the season's first allocation:
# - WetIncremental: local HR fully allocated, scenario start percentage plus a fixed weekly step
# - DryHigh / DryMedian / DryLow: local HR short, linear function of the time step
#
# Percentages are stored as fractions in [0, 1]; the published schedules are in percent.

from dataclasses import dataclass
from enum import Enum

from catchment_policy.exceptions import ConfigurationError


class TransferRegime(Enum):
    """Closed set of transfer allocation regimes."""
    WET_INCREMENTAL = "wet_incremental"
    DRY_HIGH = "dry_high"
    DRY_MEDIAN = "dry_median"
    DRY_LOW = "dry_low"


# scenario -> (starting percentage, weeks until 100%)
WET_SCHEDULE = {
    "high": (74.0, 4),
    "median": (56.0, 8),
    "low": (48.0, 11),
}

# regime -> (slope, intercept), percent per time step
DRY_LINES = {
    TransferRegime.DRY_HIGH: (1.2525, 48.541),
    TransferRegime.DRY_MEDIAN: (1.4005, 5.3381),
    TransferRegime.DRY_LOW: (1.0116, -3.2019),
}

DRY_REGIMES = {
    "high": TransferRegime.DRY_HIGH,
    "median": TransferRegime.DRY_MEDIAN,
    "low": TransferRegime.DRY_LOW,
}


@dataclass
class TransferAllocation:
    """Running transfer-system allocation for the current season.

    Args:
        scenario: Allocation outlook, one of "high", "median", "low"
        regime: Regime chosen at first allocation
        percentage: Current allocation as a fraction of entitlement
        increment: Weekly step in percentage points (wet regime only)
    """
    scenario: str = "high"
    regime: TransferRegime = TransferRegime.WET_INCREMENTAL
    percentage: float = 0.0
    increment: float = 0.0

    def __post_init__(self):
        validate_scenario(self.scenario)


def validate_scenario(scenario):
    """Raise ConfigurationError for an unknown allocation outlook."""
    if scenario not in WET_SCHEDULE:
        valid = ", ".join(sorted(WET_SCHEDULE.keys()))
        raise ConfigurationError(
            f"Invalid transfer allocation scenario '{scenario}'. Valid scenarios: {valid}"
        )
    return scenario


def evaluate(regime, allocation, timestep):
    """Allocation percentage for a regime at a within-season time step.

    Args:
        regime: TransferRegime to evaluate
        allocation: TransferAllocation holding the current percentage and increment
        timestep: Within-season time step index (1-based)

    Returns:
        Allocation fraction clamped to [0, 1]
    """
    if regime is TransferRegime.WET_INCREMENTAL:
        perc = allocation.percentage + allocation.increment / 100.0
    else:
        slope, intercept = DRY_LINES[regime]
        perc = (slope * timestep + intercept) / 100.0
    return min(1.0, max(0.0, perc))


def start_season(allocation, hr_fully_allocated, timestep):
    """Choose the season's regime and set the opening percentage.

    Args:
        allocation: TransferAllocation to reset
        hr_fully_allocated: True when local HR allocation is at 100%
        timestep: Within-season time step of the first allocation

    Returns:
        Opening allocation fraction
    """
    if hr_fully_allocated:
        start, weeks_to_full = WET_SCHEDULE[allocation.scenario]
        allocation.regime = TransferRegime.WET_INCREMENTAL
        allocation.percentage = start / 100.0
        allocation.increment = (100.0 - start) / weeks_to_full
    else:
        allocation.regime = DRY_REGIMES[allocation.scenario]
        allocation.increment = 0.0
        # dry lines are published against the week after the opening announcement
        allocation.percentage = evaluate(allocation.regime, allocation, timestep + 1)
    return allocation.percentage


def advance(allocation, timestep):
    """Move the transfer percentage forward by one clock tick."""
    allocation.percentage = evaluate(allocation.regime, allocation, timestep)
    return allocation.percentage
