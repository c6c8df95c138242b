# Simulation runner for the catchment policy engine
# Layer 3: Simulation Engine
#
# Drives update_policy() once per day over a forcing table. The forcing
# table stands in for the hydrological and farm models: it supplies dam
# volume and level, reference-gauge flow, projected inflow, trigger-bore
# readings, and the orders farms would like to place. Requested orders are
# capped at the allocations reported on the previous tick.

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

import numpy as np
import pandas as pd

from catchment_policy.exceptions import ConfigurationError
from catchment_policy.simulation.data_loader import PolicyDataLoader, _skip_metadata_rows, initialize_policy_state
from catchment_policy.simulation.metrics import recreational_index, rolling_dam_levels
from catchment_policy.simulation.policy import get_avail_farm_allocations, get_dam_extraction, update_policy

logger = logging.getLogger(__name__)

FORCING_COLUMNS = ["dam_volume", "dam_level", "reference_flow", "proj_inflow"]
SW_ORDER_PREFIX = "sw_order_"
GW_ORDER_PREFIX = "gw_order_"
BORE_PREFIX = "bore_"


@dataclass
class PolicyRunResults:
    """Everything a policy run produces.

    Args:
        policy_state: Final PolicyState (holds tick log, unmet orders, gw annual log)
        daily_records: One row per forcing day (release, orders, dam level)
        farm_allocation_records: One row per farm zone per policy tick
    """
    policy_state: object
    scenario_name: str
    start_date: object
    end_date: object
    daily_records: List[dict] = field(default_factory=list)
    farm_allocation_records: List[dict] = field(default_factory=list)


def load_forcing(filepath):
    """Load the daily forcing table.

    Args:
        filepath: CSV with a date column and the forcing columns

    Returns:
        DataFrame indexed by date
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Forcing file not found: {filepath}")
    df = pd.read_csv(filepath, skiprows=_skip_metadata_rows(filepath), parse_dates=["date"])
    return df.set_index("date").sort_index()


def _check_forcing(forcing):
    missing = [c for c in FORCING_COLUMNS if c not in forcing.columns]
    if missing:
        raise ConfigurationError(f"Forcing table is missing columns: {', '.join(missing)}")
    if forcing.empty:
        raise ConfigurationError("Forcing table has no rows in the scenario period")


def _column_value(row, column, default=0.0):
    if column in row.index and not pd.isna(row[column]):
        return float(row[column])
    return default


def _capped_orders(row, allocations, prefix, available):
    """Requested orders from the forcing row, capped at what each zone has available."""
    orders = {}
    for zone_id, alloc in allocations.items():
        requested = _column_value(row, f"{prefix}{zone_id}")
        orders[zone_id] = max(0.0, min(requested, available(alloc)))
    return orders


def run_simulation(scenario, forcing=None, data_loader=None, project_root=None, verbose=False):
    """Run the policy engine over the scenario period.

    Args:
        scenario: Loaded Scenario object
        forcing: Optional forcing DataFrame (loaded from scenario.data.forcing if None)
        data_loader: Optional PolicyDataLoader (created if None)
        project_root: Root for resolving relative data paths
        verbose: Print progress messages

    Returns:
        PolicyRunResults
    """
    if data_loader is None:
        data_loader = PolicyDataLoader(scenario, project_root)

    if forcing is None:
        if not scenario.data.forcing:
            raise ConfigurationError("No forcing table given and none named in the scenario")
        forcing = load_forcing(data_loader.resolve_path(scenario.data.forcing))

    start = pd.Timestamp(scenario.metadata.start_date)
    end = pd.Timestamp(scenario.metadata.end_date)
    forcing = forcing.copy()
    forcing.index = pd.to_datetime(forcing.index)
    forcing = forcing.loc[start:end]
    _check_forcing(forcing)

    policy_state = initialize_policy_state(scenario, data_loader, len(forcing))
    results = PolicyRunResults(
        policy_state=policy_state,
        scenario_name=scenario.metadata.name,
        start_date=scenario.metadata.start_date,
        end_date=scenario.metadata.end_date,
    )

    flow = forcing["reference_flow"].to_numpy(dtype=float)
    rolling_levels = rolling_dam_levels(forcing["dam_level"], scenario.rolling_level_years).to_numpy()
    bore_ids = list(policy_state.gw_state.trigger_tables.keys())
    allocations = get_avail_farm_allocations(policy_state)

    if verbose:
        print(f"Starting policy run: {scenario.metadata.start_date} to {scenario.metadata.end_date}")
        print(f"Zones: {len(policy_state.sw_state.zones)}, "
              f"groundwater zones: {len(policy_state.gw_state.zones)}, "
              f"options: {', '.join(policy_state.applied_options)}")

    prev_year = None
    for day_index, (timestamp, row) in enumerate(forcing.iterrows()):
        current_date = timestamp.date()

        farm_orders = _capped_orders(row, allocations, SW_ORDER_PREFIX, lambda a: a.sw_hr + a.sw_lr)
        gw_allocations = {z: a for z, a in allocations.items() if z in policy_state.gw_state.zones}
        gw_orders = _capped_orders(row, gw_allocations, GW_ORDER_PREFIX, lambda a: a.gw_hr + a.gw_lr)
        bore_levels = {
            bore: _column_value(row, f"{BORE_PREFIX}{bore}")
            for bore in bore_ids
            if f"{BORE_PREFIX}{bore}" in row.index
        }

        extraction = get_dam_extraction(policy_state, current_date)
        dam_vol = max(0.0, float(row["dam_volume"]) - extraction)

        result = update_policy(
            policy_state,
            current_date,
            day_index,
            farm_orders,
            gw_orders,
            dam_vol,
            float(rolling_levels[day_index]),
            flow,
            float(row["proj_inflow"]),
            bore_levels,
        )
        allocations = result.farm_allocations

        results.daily_records.append({
            "date": current_date,
            "policy_ran": result.ran,
            "release_ml_per_day": result.release.volume if result.ran else 0.0,
            "dam_volume_ml": dam_vol,
            "dam_extraction_ml": extraction,
            "dam_level_m": float(row["dam_level"]),
            "recreational_index": recreational_index(float(row["dam_level"])),
            "sw_orders_ml": sum(farm_orders.values()),
            "gw_orders_ml": sum(gw_orders.values()),
        })

        if result.ran:
            for zone_id, alloc in allocations.items():
                results.farm_allocation_records.append({
                    "date": current_date,
                    "zone_id": zone_id,
                    "sw_hr_ml": alloc.sw_hr,
                    "sw_lr_ml": alloc.sw_lr,
                    "gw_hr_ml": alloc.gw_hr,
                    "gw_lr_ml": alloc.gw_lr,
                })

        if verbose and result.gw_log is not None and current_date.year != prev_year:
            prev_year = current_date.year
            print(f"  {current_date}: groundwater year {result.gw_log['year']}, "
                  f"SW HR {result.gw_log['sw_perc_entitlement']:.1%}, "
                  f"licence ratio {result.gw_log['alloc_ratio']:.2f}")

    if verbose:
        sw_state = policy_state.sw_state
        releases = np.array([r["release_ml_per_day"] for r in results.daily_records])
        print(f"Policy run complete: {len(forcing)} days, {len(policy_state.tick_log)} policy ticks")
        print(f"  Mean release on policy ticks: "
              f"{releases[releases > 0].mean() if (releases > 0).any() else 0.0:,.1f} ML/d")
        print(f"  Unmet orders: {len(sw_state.unmet_orders)}")

    return results


def main():
    """Run the policy engine from command line."""
    import sys

    from catchment_policy.settings.loader import load_scenario

    if len(sys.argv) < 2:
        print("Usage: python -m catchment_policy.simulation.simulation <scenario_file>")
        print("Example: python -m catchment_policy.simulation.simulation settings/scenarios/baseline.yaml")
        sys.exit(1)

    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    scenario_path = sys.argv[1]
    print(f"Loading scenario: {scenario_path}")
    scenario = load_scenario(scenario_path)

    print("Running policy engine...")
    results = run_simulation(scenario, verbose=True)

    print("\n=== POLICY SUMMARY ===")
    for row in results.policy_state.tick_log[-1:]:
        print(f"Final HR allocation: {row['hr_perc']:.1%}, LR allocation: {row['lr_perc']:.1%}")
    for row in results.policy_state.gw_state.annual_log:
        print(f"  GW year {row['year']}: licence {row['total_allocation']:,.0f} ML, "
              f"used {row['total_used']:,.0f} ML, carryover {row['total_carryover']:,.0f} ML")


if __name__ == "__main__":
    main()
