# Dam release calculation for the catchment policy engine
# Layer 3: Simulation Engine
#
# Converts the water ordered over a release window into a daily release:
#   release = daily regulation-zone orders + daily other/environmental orders
#             + transmission loss + weir operational loss
#             + downstream supply + minimum passing flow release
#
# Minimum passing flows come from a dam-volume lookup and are funded from a
# dedicated reservoir allocation.

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

logger = logging.getLogger(__name__)

TRANSMISSION_LOSS_RATE = 0.04
WEIR_LOSS_RATE = 0.10
DOWNSTREAM_SUPPLY = 1.178   # ML/d

# (upper dam volume ML, (meps, mcs) ML/d); above the last band see TOP_BAND_FLOWS
MINIMUM_FLOW_BANDS = (
    (150000.0, (10.0, 35.0)),
    (200000.0, (50.0, 35.0)),
    (250000.0, (80.0, 70.0)),
)

# month -> (meps, mcs) ML/d when the dam holds more than the last band
TOP_BAND_FLOWS = {
    7: (150.0, 70.0), 8: (150.0, 70.0), 9: (150.0, 70.0), 10: (150.0, 70.0),
    11: (100.0, 70.0), 12: (100.0, 70.0),
    1: (90.0, 70.0), 2: (90.0, 70.0), 3: (90.0, 70.0), 4: (90.0, 70.0),
    5: (120.0, 70.0), 6: (120.0, 70.0),
}


@dataclass
class DamReleaseContext:
    """Input for one release calculation; not persisted.

    Args:
        regulation_orders: Regulation zone -> ML ordered over the release window
        other_orders: Other-delivery plus environmental orders over the window (ML)
        dam_vol: Current dam volume (ML)
        proj_inflow: Projected inflow over the window (ML)
        release_timeframe: Release window length (days)
        month: Calendar month of the tick
        reservoir_allocation: Allocation available to fund minimum passing flows (ML)
        transmission_zone: Regulation zone charged the transmission loss
        weir_zone: Regulation zone charged the weir operational loss
    """
    regulation_orders: Dict[str, float]
    other_orders: float
    dam_vol: float
    proj_inflow: float
    release_timeframe: int
    month: int
    reservoir_allocation: float = float("inf")
    transmission_zone: Optional[str] = None
    weir_zone: Optional[str] = None


@dataclass
class DamRelease:
    """Daily release and its components (ML/d unless stated)."""
    release: float
    daily_orders: Dict[str, float] = field(default_factory=dict)
    other_release: float = 0.0
    transmission_loss: float = 0.0
    weir_loss: float = 0.0
    downstream_supply: float = DOWNSTREAM_SUPPLY
    meps: float = 0.0
    mcs: float = 0.0
    mpf_release: float = 0.0
    reservoir_used: float = 0.0     # ML over the window
    clamped: bool = False


def minimum_passing_flows(dam_vol, month):
    """Minimum passing flow targets (meps, mcs) in ML/d for a dam volume."""
    for upper, flows in MINIMUM_FLOW_BANDS:
        if dam_vol <= upper:
            return flows
    return TOP_BAND_FLOWS[month]


def fund_minimum_flows(meps, mcs, reservoir_allocation, release_timeframe):
    """Minimum flow release the reservoir allocation can fund over the window.

    Both targets if the allocation covers them together, otherwise meps alone,
    otherwise mcs alone, otherwise nothing.

    Returns:
        Tuple of (daily release ML/d, allocation used ML)
    """
    for daily in (meps + mcs, meps, mcs):
        volume = daily * release_timeframe
        if daily > 0.0 and volume <= reservoir_allocation:
            return daily, volume
    return 0.0, 0.0


def calc_dam_release(ctx: DamReleaseContext) -> DamRelease:
    """Daily release volume for the coming window.

    Args:
        ctx: DamReleaseContext for this tick

    Returns:
        DamRelease; a negative total is clamped to zero and flagged
    """
    timeframe = max(1, ctx.release_timeframe)
    daily_orders = {name: order / timeframe for name, order in ctx.regulation_orders.items()}
    other_release = ctx.other_orders / timeframe

    transmission_loss = TRANSMISSION_LOSS_RATE * daily_orders.get(ctx.transmission_zone, 0.0)
    weir_loss = WEIR_LOSS_RATE * daily_orders.get(ctx.weir_zone, 0.0)

    meps, mcs = minimum_passing_flows(ctx.dam_vol, ctx.month)
    inflow_rate = max(0.0, ctx.proj_inflow / timeframe)
    meps = min(meps, inflow_rate)
    mcs = min(mcs, inflow_rate)
    mpf_release, reservoir_used = fund_minimum_flows(meps, mcs, ctx.reservoir_allocation, timeframe)

    release = (
        sum(daily_orders.values()) + other_release + transmission_loss + weir_loss
        + DOWNSTREAM_SUPPLY + mpf_release
    )

    clamped = False
    if release < 0.0:
        logger.warning("Negative dam release %.3f ML/d clamped to zero", release)
        release = 0.0
        clamped = True

    return DamRelease(
        release=release,
        daily_orders=daily_orders,
        other_release=other_release,
        transmission_loss=transmission_loss,
        weir_loss=weir_loss,
        meps=meps,
        mcs=mcs,
        mpf_release=mpf_release,
        reservoir_used=reservoir_used,
        clamped=clamped,
    )
