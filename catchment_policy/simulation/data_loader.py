# Data loader for the catchment policy engine
# Layer 3: Simulation Engine
#
# Reads static reference tables (zone entitlements, environmental and
# other-delivery systems, trigger-bore tables, extraction schedule) and
# assembles the typed PolicyState the engine runs on.
# All data is loaded once at model start.

import logging
from pathlib import Path

import pandas as pd

from catchment_policy.exceptions import ConfigurationError
from catchment_policy.policies import TRIGGER_TABLES, TransferAllocation, get_policy_option, get_restriction_policy
from catchment_policy.simulation.state import (
    ENVIRONMENTAL,
    FARM,
    OTHER,
    EnvironmentState,
    GroundwaterState,
    GroundwaterZoneRecord,
    PolicyState,
    RecordIndex,
    ReliabilityVolumes,
    SurfaceWaterState,
    ZoneEntitlement,
    create_zone,
    series_lengths,
)

logger = logging.getLogger(__name__)

FARM_ZONE_COLUMNS = ["ZoneID", "WatSystem", "wat_HR", "wat_LR"]
SYSTEM_COLUMNS = ["Water System", "HR_Entitlement", "LR_Entitlement"]


def _skip_metadata_rows(filepath):
    """Count number of comment rows at start of CSV file."""
    filepath = Path(filepath)
    with open(filepath, "r") as f:
        skip = 0
        for line in f:
            if line.startswith("#"):
                skip += 1
            else:
                break
        return skip


def _read_table(filepath, required_columns, dtype=None):
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Reference table not found: {filepath}")
    df = pd.read_csv(filepath, skiprows=_skip_metadata_rows(filepath), dtype=dtype)
    missing = [c for c in required_columns if c not in df.columns]
    if missing:
        raise ConfigurationError(f"{filepath.name} is missing columns: {', '.join(missing)}")
    return df


def load_farm_zones(filepath):
    """Load farm zone entitlement table.

    Args:
        filepath: Path to farm zone CSV

    Returns:
        DataFrame with one row per farm zone; ZoneID as string. Optional
        columns are filled with defaults: FULLNAME (ZoneID), RegZone (ZoneID),
        TrigBore (""), zone_ha / agric_ha / goul_HR / goul_LR / gw_Ent (0.0),
        crop_HR / crop_LR (wat_HR / wat_LR)
    """
    df = _read_table(filepath, FARM_ZONE_COLUMNS, dtype={"ZoneID": str, "TrigBore": str, "RegZone": str})
    df["ZoneID"] = df["ZoneID"].astype(str)
    if df["ZoneID"].duplicated().any():
        dupes = ", ".join(df.loc[df["ZoneID"].duplicated(), "ZoneID"])
        raise ConfigurationError(f"Duplicate zone ids in {Path(filepath).name}: {dupes}")

    for column in ["zone_ha", "agric_ha", "goul_HR", "goul_LR", "gw_Ent"]:
        if column not in df.columns:
            df[column] = 0.0
    if "FULLNAME" not in df.columns:
        df["FULLNAME"] = df["ZoneID"]
    if "RegZone" not in df.columns:
        df["RegZone"] = df["ZoneID"]
    if "TrigBore" not in df.columns:
        df["TrigBore"] = ""
    df["TrigBore"] = df["TrigBore"].fillna("").astype(str)
    if "crop_HR" not in df.columns:
        df["crop_HR"] = df["wat_HR"]
    if "crop_LR" not in df.columns:
        df["crop_LR"] = df["wat_LR"]
    return df


def load_delivery_systems(filepath):
    """Load environmental or other-delivery system entitlements.

    Returns:
        DataFrame with Water System, RegZone, HR_Entitlement, LR_Entitlement
    """
    df = _read_table(filepath, SYSTEM_COLUMNS)
    if "RegZone" not in df.columns:
        df["RegZone"] = df["Water System"]
    return df


def load_trigger_tables(bore_dir):
    """Load depth-to-proportion tables for every trigger bore.

    Expects one sub-directory per bore, each holding current_trigger.csv,
    drought_trigger.csv and nondrought_trigger.csv with Depth and Proportion.

    Returns:
        Dict bore id -> table name -> DataFrame sorted by Depth
    """
    bore_dir = Path(bore_dir)
    if not bore_dir.is_dir():
        raise FileNotFoundError(f"Trigger bore directory not found: {bore_dir}")

    tables = {}
    for sub in sorted(p for p in bore_dir.iterdir() if p.is_dir()):
        tables[sub.name] = {
            name: _read_table(sub / f"{name}_trigger.csv", ["Depth", "Proportion"])
            .sort_values("Depth")
            .reset_index(drop=True)
            for name in TRIGGER_TABLES
        }
    return tables


def load_dam_extractions(filepath):
    """Historical dam extractions not explained by modeled discharge.

    Returns:
        Series of ML indexed by date
    """
    df = _read_table(filepath, ["Date", "Extraction"])
    df["Date"] = pd.to_datetime(df["Date"])
    return df.set_index("Date")["Extraction"].astype(float)


def build_zones(farm_df, env_df, other_df, n_weeks, n_years):
    """Assemble typed zone records from the reference tables.

    Returns:
        RecordIndex of Zone
    """
    zones = []
    for row in farm_df.itertuples(index=False):
        entitlement = ZoneEntitlement(
            local=ReliabilityVolumes(float(row.wat_HR), float(row.wat_LR)),
            transfer=ReliabilityVolumes(float(row.goul_HR), float(row.goul_LR)),
            farm=ReliabilityVolumes(float(row.crop_HR), float(row.crop_LR)),
        )
        zones.append(create_zone(
            zone_id=row.ZoneID,
            zone_type=FARM,
            entitlement=entitlement,
            n_weeks=n_weeks,
            n_years=n_years,
            name=str(row.FULLNAME),
            water_system=str(row.WatSystem),
            regulation_zone=str(row.RegZone),
            zone_ha=float(row.zone_ha),
            crop_ha=float(row.agric_ha),
        ))

    for zone_type, df in ((ENVIRONMENTAL, env_df), (OTHER, other_df)):
        for _, row in df.iterrows():
            system = str(row["Water System"])
            zones.append(create_zone(
                zone_id=system,
                zone_type=zone_type,
                entitlement=ZoneEntitlement(
                    local=ReliabilityVolumes(float(row["HR_Entitlement"]), float(row["LR_Entitlement"])),
                ),
                n_weeks=n_weeks,
                n_years=n_years,
                water_system=system,
                regulation_zone=str(row["RegZone"]),
            ))

    return RecordIndex(zones)


def build_groundwater_zones(farm_df):
    """Groundwater licence records for every farm zone with a trigger bore."""
    records = []
    for row in farm_df.itertuples(index=False):
        if not row.TrigBore:
            continue
        records.append(GroundwaterZoneRecord(
            zone_id=row.ZoneID,
            trading_zone=str(getattr(row, "TRADING_ZO", "")),
            entitlement=float(row.gw_Ent),
            trigger_bore=row.TrigBore,
        ))
    return RecordIndex(records)


def check_trigger_bores(gw_zones, trigger_tables):
    """Every bore referenced by a zone needs exactly one table directory.

    Raises:
        ConfigurationError: If the number of bore directories differs from the
            number of distinct bores referenced, or a referenced bore is missing
    """
    referenced = {z.trigger_bore for z in gw_zones}
    if len(trigger_tables) != len(referenced):
        raise ConfigurationError(
            f"Found {len(trigger_tables)} trigger bore directories but zones reference "
            f"{len(referenced)} distinct trigger bores"
        )
    missing = referenced - set(trigger_tables)
    if missing:
        raise ConfigurationError(f"No trigger tables for bores: {', '.join(sorted(missing))}")


def build_surface_water_state(scenario, zones, n_weeks, n_years):
    """SurfaceWaterState from scenario settings and zone records."""
    sw = scenario.surface_water
    env_hr = sum(z.entitlement.local.hr for z in zones.of_type(ENVIRONMENTAL))
    env_lr = sum(z.entitlement.local.lr for z in zones.of_type(ENVIRONMENTAL))

    sw_state = SurfaceWaterState(
        zones=zones,
        env_state=EnvironmentState.from_entitlements(env_hr, env_lr, sw.fixed_annual_losses),
        transfer=TransferAllocation(scenario=sw.transfer_allocation_scenario),
        n_weeks=n_weeks,
        n_years=n_years,
        season_start=sw.season_start,
        first_release=sw.first_release,
        season_end=sw.season_end,
        timestep_days=sw.timestep_days,
        shared_utility_share=sw.shared_utility_share,
        worst_case_loss=sw.worst_case_loss,
        min_op_vol=sw.min_op_vol,
        carryover_factor=sw.carryover_factor,
        irrigation_areas=sw.irrigation_areas,
        carryover_exempt=sw.carryover_exempt,
        mpf_reservoir=sw.mpf_reservoir,
        transmission_zone=sw.transmission_zone,
        weir_zone=sw.weir_zone,
        strict_overrun=sw.strict_overrun,
    )
    if sw.mpf_reservoir and sw.mpf_reservoir not in zones:
        raise ConfigurationError(f"Minimum passing flow reservoir '{sw.mpf_reservoir}' is not a known zone")
    sw_state.recalculate_entitlements()
    return sw_state


class PolicyDataLoader:
    """Loads and caches the reference tables named by a scenario."""

    def __init__(self, scenario, project_root=None):
        """Initialize data loader and load all reference tables.

        Args:
            scenario: Loaded Scenario
            project_root: Optional path to project root (for resolving relative paths)
        """
        self.project_root = Path(project_root) if project_root else Path.cwd()
        data = scenario.data

        self.farm_zones = load_farm_zones(self.resolve_path(data.farm_zones))
        self.environmental_systems = load_delivery_systems(self.resolve_path(data.environmental_systems))
        self.other_systems = load_delivery_systems(self.resolve_path(data.other_systems))
        self.trigger_tables = load_trigger_tables(self.resolve_path(data.trigger_bores))
        self.dam_extractions = None
        if data.dam_extractions:
            self.dam_extractions = load_dam_extractions(self.resolve_path(data.dam_extractions))

    def resolve_path(self, relative):
        path = Path(relative)
        return path if path.is_absolute() else self.project_root / path


def initialize_policy_state(scenario, data_loader, n_days):
    """Build the PolicyState aggregate for a run of n_days.

    Args:
        scenario: Loaded Scenario
        data_loader: PolicyDataLoader with reference tables
        n_days: Length of the daily run (sizes weekly and yearly series)

    Returns:
        PolicyState with the scenario's policy option applied
    """
    n_weeks, n_years = series_lengths(n_days)
    zones = build_zones(
        data_loader.farm_zones, data_loader.environmental_systems, data_loader.other_systems,
        n_weeks, n_years,
    )
    sw_state = build_surface_water_state(scenario, zones, n_weeks, n_years)

    gw_config = scenario.groundwater
    gw_zones = build_groundwater_zones(data_loader.farm_zones)
    check_trigger_bores(gw_zones, data_loader.trigger_tables)
    restriction_kwargs = {}
    if gw_config.restriction_type == "coupled":
        restriction_kwargs = {
            "drought_trigger": gw_config.drought_trigger,
            "max_drought_years": gw_config.max_drought_years,
        }
    gw_state = GroundwaterState(
        zones=gw_zones,
        trigger_tables=data_loader.trigger_tables,
        restriction=get_restriction_policy(gw_config.restriction_type, **restriction_kwargs),
        season_start=scenario.surface_water.season_start,
        season_end=scenario.surface_water.season_end,
        max_carryover_perc=gw_config.max_carryover_perc,
        carryover_period=gw_config.carryover_period,
        log_bores=gw_config.log_bores,
    )

    policy_state = PolicyState(
        sw_state=sw_state,
        gw_state=gw_state,
        dam_extractions=data_loader.dam_extractions,
        sw_cap=scenario.policy.sw_cap,
        gw_cap=scenario.policy.gw_cap,
        release_timeframe=scenario.surface_water.release_timeframe,
    )

    option = get_policy_option(scenario.policy.policy_option, **scenario.policy.option_parameters)
    option.apply(policy_state)
    policy_state.applied_options.append(option.name)
    logger.info("Policy state built: %d zones, %d groundwater zones, option '%s'",
                len(zones), len(gw_zones), option.name)
    return policy_state
