# Results output for the catchment policy engine
# Layer 3: Simulation Engine
#
# Writes policy run results to CSV files and generates matplotlib plots.
# Output structure:
#   /results/<scenario>_YYYYMMDD_HHMMSS/
#     policy_ticks.csv
#     daily_releases.csv
#     groundwater_annual.csv
#     farm_allocations.csv
#     season_summary.csv
#     unmet_orders.csv
#     simulation_config.json
#     plots/
#       allocation_percentages.png
#       dam_releases.png
#       groundwater_licences.png

import json
from datetime import datetime
from pathlib import Path

import matplotlib.pyplot as plt
import pandas as pd

from catchment_policy.simulation.metrics import groundwater_summary, season_summary, tick_log_frame


def create_output_directory(base_path="results", scenario_name="catchment_policy"):
    """Create timestamped output directory.

    Args:
        base_path: Base results directory
        scenario_name: Name prefix for output folder

    Returns:
        Path to created directory
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    output_dir = Path(base_path) / f"{scenario_name}_{timestamp}"
    output_dir.mkdir(parents=True, exist_ok=True)
    (output_dir / "plots").mkdir(exist_ok=True)
    return output_dir


def write_tick_log(tick_log, output_path):
    """Write the per-tick policy log to CSV.

    Args:
        tick_log: List of tick rows from PolicyState.tick_log
        output_path: Path to output CSV file
    """
    df = pd.DataFrame(tick_log)
    df.to_csv(output_path, index=False)
    return df


def write_daily_releases(daily_records, output_path):
    """Write daily release, dam and order series to CSV."""
    df = pd.DataFrame(daily_records)
    df.to_csv(output_path, index=False)
    return df


def write_groundwater_log(annual_log, output_path):
    """Write the groundwater annual log to CSV.

    One row per season start and season end: year, surface-water HR
    percentage, licence/entitlement ratio, reference bore levels at season
    start, total licence, total used and total carryover.
    """
    df = groundwater_summary(annual_log)
    df.to_csv(output_path, index=False)
    return df


def write_farm_allocations(farm_allocation_records, output_path):
    """Write per-zone farm allocations on each policy tick to CSV."""
    df = pd.DataFrame(farm_allocation_records)
    df.to_csv(output_path, index=False)
    return df


def write_unmet_orders(unmet_orders, output_path):
    """Write orders that exceeded a zone's available allocation to CSV."""
    columns = ["date", "timestep", "zone_id", "requested_ml", "available_ml", "unmet_ml"]
    df = pd.DataFrame(unmet_orders, columns=columns)
    df.to_csv(output_path, index=False)
    return df


def write_simulation_config(scenario, policy_state, output_path):
    """Write scenario configuration snapshot to JSON.

    Args:
        scenario: Loaded Scenario object
        policy_state: PolicyState the run used (records applied options)
        output_path: Path to output JSON file
    """
    sw = scenario.surface_water
    gw = scenario.groundwater
    config = {
        "scenario": {
            "name": scenario.metadata.name,
            "description": scenario.metadata.description,
            "version": scenario.metadata.version,
            "start_date": scenario.metadata.start_date.isoformat(),
            "end_date": scenario.metadata.end_date.isoformat(),
        },
        "surface_water": {
            "season_start": list(sw.season_start),
            "first_release": list(sw.first_release),
            "season_end": list(sw.season_end),
            "timestep_days": sw.timestep_days,
            "shared_utility_share": sw.shared_utility_share,
            "transfer_allocation_scenario": sw.transfer_allocation_scenario,
            "release_timeframe_days": sw.release_timeframe,
        },
        "groundwater": {
            "restriction": policy_state.gw_state.restriction.name,
            "max_carryover_perc": gw.max_carryover_perc,
        },
        "policy": {
            "sw_cap": scenario.policy.sw_cap,
            "gw_cap": scenario.policy.gw_cap,
            "applied_options": policy_state.applied_options,
        },
        "zones": [
            {"id": z.zone_id, "type": z.zone_type, "hr_ml": z.entitlement.local.hr, "lr_ml": z.entitlement.local.lr}
            for z in policy_state.sw_state.zones
        ],
    }

    with open(output_path, "w") as f:
        json.dump(config, f, indent=2)


def plot_allocation_percentages(tick_log, output_path):
    """Plot HR, LR and transfer allocation percentages over time.

    Args:
        tick_log: List of tick rows
        output_path: Path to save plot
    """
    df = tick_log_frame(tick_log)

    fig, ax = plt.subplots(figsize=(12, 6))
    if not df.empty:
        ax.step(df.index, df["hr_perc"] * 100, where="post", label="High reliability", color="#2E86AB")
        ax.step(df.index, df["lr_perc"] * 100, where="post", label="Low reliability", color="#A23B72")
        ax.step(df.index, df["transfer_perc"] * 100, where="post", label="Transfer system",
                color="#F18F01", linestyle="--")

    ax.set_xlabel("Date")
    ax.set_ylabel("Allocation (% of entitlement)")
    ax.set_title("Seasonal Water Allocation")
    ax.set_ylim(0, 105)
    ax.legend()

    plt.tight_layout()
    plt.savefig(output_path, dpi=150)
    plt.close()


def plot_dam_releases(daily_records, output_path):
    """Plot dam releases on policy ticks against dam volume."""
    df = pd.DataFrame(daily_records)

    fig, ax = plt.subplots(figsize=(12, 6))
    if not df.empty:
        df["date"] = pd.to_datetime(df["date"])
        ticks = df[df["policy_ran"]]
        ax.bar(ticks["date"], ticks["release_ml_per_day"], width=5, color="#2E86AB", label="Release")
        ax2 = ax.twinx()
        ax2.plot(df["date"], df["dam_volume_ml"] / 1000, color="#A23B72", linewidth=1, label="Dam volume")
        ax2.set_ylabel("Dam volume (GL)")
        ax2.legend(loc="upper right")

    ax.set_xlabel("Date")
    ax.set_ylabel("Release (ML/day)")
    ax.set_title("Dam Releases")
    ax.legend(loc="upper left")

    plt.tight_layout()
    plt.savefig(output_path, dpi=150)
    plt.close()


def plot_groundwater_licences(annual_log, output_path):
    """Plot total groundwater licence, use and carryover per year (season end rows)."""
    df = pd.DataFrame(annual_log)

    fig, ax = plt.subplots(figsize=(10, 6))
    if not df.empty:
        season_end = df.groupby("year").last()
        years = season_end.index.to_numpy()
        width = 0.27
        ax.bar(years - width, season_end["total_allocation"], width, label="Licence", color="#2E86AB")
        ax.bar(years, season_end["total_used"], width, label="Used", color="#A23B72")
        ax.bar(years + width, season_end["total_carryover"], width, label="Carryover", color="#F18F01")
        ax.set_xticks(years)

    ax.set_xlabel("Model year")
    ax.set_ylabel("Volume (ML)")
    ax.set_title("Groundwater Licences")
    ax.legend()

    plt.tight_layout()
    plt.savefig(output_path, dpi=150)
    plt.close()


def write_results(results, scenario, output_dir=None):
    """Write all policy run results to files.

    Args:
        results: PolicyRunResults from run_simulation
        scenario: Loaded Scenario object
        output_dir: Output directory (created if not provided)

    Returns:
        Path to output directory
    """
    if output_dir is None:
        output_dir = create_output_directory(scenario_name=scenario.metadata.name)
    else:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        (output_dir / "plots").mkdir(exist_ok=True)

    policy_state = results.policy_state

    print(f"Writing results to {output_dir}")

    tick_df = write_tick_log(policy_state.tick_log, output_dir / "policy_ticks.csv")
    print(f"  - policy_ticks.csv: {len(tick_df)} rows")

    daily_df = write_daily_releases(results.daily_records, output_dir / "daily_releases.csv")
    print(f"  - daily_releases.csv: {len(daily_df)} rows")

    gw_df = write_groundwater_log(policy_state.gw_state.annual_log, output_dir / "groundwater_annual.csv")
    print(f"  - groundwater_annual.csv: {len(gw_df)} rows")

    farm_df = write_farm_allocations(results.farm_allocation_records, output_dir / "farm_allocations.csv")
    print(f"  - farm_allocations.csv: {len(farm_df)} rows")

    summary_df = season_summary(policy_state.tick_log)
    summary_df.to_csv(output_dir / "season_summary.csv", index=False)
    print(f"  - season_summary.csv: {len(summary_df)} rows")

    unmet_df = write_unmet_orders(policy_state.sw_state.unmet_orders, output_dir / "unmet_orders.csv")
    print(f"  - unmet_orders.csv: {len(unmet_df)} rows")

    write_simulation_config(scenario, policy_state, output_dir / "simulation_config.json")
    print("  - simulation_config.json")

    plots_dir = output_dir / "plots"
    plot_allocation_percentages(policy_state.tick_log, plots_dir / "allocation_percentages.png")
    print("  - plots/allocation_percentages.png")

    plot_dam_releases(results.daily_records, plots_dir / "dam_releases.png")
    print("  - plots/dam_releases.png")

    plot_groundwater_licences(policy_state.gw_state.annual_log, plots_dir / "groundwater_licences.png")
    print("  - plots/groundwater_licences.png")

    print(f"\nResults written to: {output_dir}")
    return output_dir


def main():
    """Run the policy engine and write results from command line."""
    import sys

    from catchment_policy.settings.loader import load_scenario
    from catchment_policy.simulation.simulation import run_simulation

    if len(sys.argv) < 2:
        print("Usage: python -m catchment_policy.simulation.results <scenario_file> [output_dir]")
        print("Example: python -m catchment_policy.simulation.results settings/scenarios/baseline.yaml")
        sys.exit(1)

    scenario_path = sys.argv[1]
    output_dir = sys.argv[2] if len(sys.argv) > 2 else None

    print(f"Loading scenario: {scenario_path}")
    scenario = load_scenario(scenario_path)

    print("Running policy engine...")
    results = run_simulation(scenario, verbose=True)

    print("\nGenerating output files and plots...")
    output_path = write_results(results, scenario, output_dir)

    print(f"\nDone! Results saved to: {output_path}")


if __name__ == "__main__":
    main()
