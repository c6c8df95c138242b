# Metrics calculator for the catchment policy engine
# Layer 3: Simulation Engine
#
# Computes derived indicators from policy run results:
# 1. Recreational index (dam level share of capacity above a threshold)
# 2. Rolling average dam level
# 3. Season summaries of allocation percentages, orders and releases
# 4. Groundwater annual summaries

import numpy as np
import pandas as pd

DAM_CAPACITY_M = 204.0
RECREATION_THRESHOLD = 0.3


def recreational_index(dam_level, capacity=DAM_CAPACITY_M, threshold=RECREATION_THRESHOLD):
    """Recreational suitability of the dam: 1.0 when level/capacity >= threshold.

    Args:
        dam_level: Dam level (m), scalar or array
        capacity: Level at full capacity (m)
        threshold: Minimum level share for recreational use

    Returns:
        float for scalar input, numpy array otherwise
    """
    ratio = np.asarray(dam_level, dtype=float) / capacity
    index = np.where(ratio >= threshold, 1.0, 0.0)
    if index.ndim == 0:
        return float(index)
    return index


def rolling_dam_level(current_date, years, dam_levels, dates):
    """Mean dam level over the `years` preceding current_date (inclusive).

    Args:
        current_date: Date of the tick
        years: Window length in years
        dam_levels: Daily dam levels
        dates: Dates matching dam_levels

    Returns:
        Mean level over the window (nan when no level falls inside it)
    """
    levels = pd.Series(list(dam_levels), index=pd.to_datetime(list(dates)))
    end = pd.Timestamp(current_date)
    start = end - pd.DateOffset(years=years)
    window = levels[(levels.index >= start) & (levels.index <= end)]
    return float(window.mean())


def tick_log_frame(tick_log):
    """Per-tick policy log as a DataFrame indexed by date."""
    df = pd.DataFrame(tick_log)
    if df.empty:
        return df
    df["date"] = pd.to_datetime(df["date"])
    return df.set_index("date")


def season_summary(tick_log):
    """Summarize each allocation season from the per-tick log.

    Args:
        tick_log: List of tick rows from PolicyState.tick_log

    Returns:
        DataFrame with one row per season year: final HR/LR/transfer
        percentages, environmental orders, mean and total release
    """
    df = tick_log_frame(tick_log)
    if df.empty:
        return pd.DataFrame(columns=[
            "year", "ticks", "final_hr_perc", "final_lr_perc", "final_transfer_perc",
            "env_orders_ml", "mean_release_ml_per_day", "max_release_ml_per_day",
            "total_allocated_ml",
        ])

    grouped = df.groupby("year")
    summary = pd.DataFrame({
        "ticks": grouped.size(),
        "final_hr_perc": grouped["hr_perc"].last(),
        "final_lr_perc": grouped["lr_perc"].last(),
        "final_transfer_perc": grouped["transfer_perc"].last(),
        "env_orders_ml": grouped["env_season_order_ml"].max(),
        "mean_release_ml_per_day": grouped["release_ml_per_day"].mean(),
        "max_release_ml_per_day": grouped["release_ml_per_day"].max(),
        "total_allocated_ml": grouped["total_allocated_ml"].last(),
    })
    return summary.reset_index()


def groundwater_summary(annual_log):
    """Groundwater annual log with the allocation-to-entitlement ratio as a percentage."""
    df = pd.DataFrame(annual_log)
    if df.empty:
        return df
    df["alloc_ratio_pct"] = df["alloc_ratio"] * 100
    return df


def recreational_days(dam_levels, capacity=DAM_CAPACITY_M, threshold=RECREATION_THRESHOLD):
    """Share of days the dam is suitable for recreation."""
    index = recreational_index(np.asarray(dam_levels, dtype=float), capacity, threshold)
    if np.size(index) == 0:
        return 0.0
    return float(np.mean(index))


def rolling_dam_levels(dam_levels, years):
    """Trailing mean dam level for every day of a date-indexed series.

    Uses a calendar window of `years` x 365 days, which matches
    rolling_dam_level() away from leap days.
    """
    levels = pd.Series(dam_levels, dtype=float)
    levels.index = pd.to_datetime(levels.index)
    return levels.rolling(f"{int(years * 365) + 1}D").mean()
