# Scenario loader for the catchment policy engine
# Layer 2: Bridges YAML configuration to simulation runtime
#
# Loads scenario files and returns structured dataclasses. Reference tables
# (zones, delivery systems, trigger bores) are named here and read by the
# simulation data loader.

from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Optional

import yaml

from catchment_policy.policies import POLICY_OPTIONS, RESTRICTION_POLICIES, validate_scenario


@dataclass
class ScenarioMetadata:
    """Scenario identification and timing."""
    name: str
    description: str
    version: str
    start_date: date
    end_date: date


@dataclass
class SurfaceWaterConfig:
    """Surface-water allocation rules."""
    season_start: tuple = (7, 1)
    first_release: tuple = (8, 15)
    season_end: tuple = (4, 30)
    timestep_days: int = 7
    shared_utility_share: float = 0.82
    worst_case_loss: float = 18560.0       # ML
    min_op_vol: float = 1024.0             # ML
    carryover_factor: float = 0.95
    fixed_annual_losses: float = 1656.0    # ML, environmental HR
    transfer_allocation_scenario: str = "high"
    irrigation_areas: tuple = ("Rochester Irrigation Area", "Campaspe Irrigation Area")
    carryover_exempt: tuple = ()
    mpf_reservoir: Optional[str] = None
    transmission_zone: Optional[str] = None
    weir_zone: Optional[str] = None
    release_timeframe: int = 14            # days
    strict_overrun: bool = False


@dataclass
class GroundwaterConfig:
    """Groundwater licensing and restriction rules."""
    restriction_type: str = "default"
    drought_trigger: float = 0.3
    max_drought_years: int = 3
    max_carryover_perc: float = 0.25
    carryover_period: int = 1
    log_bores: tuple = ()


@dataclass
class PolicyConfig:
    """Caps applied to allocations reported to farms, and the adaptation option."""
    sw_cap: float = 1.0
    gw_cap: float = 0.6
    policy_option: str = "default"
    option_parameters: dict = field(default_factory=dict)


@dataclass
class DataConfig:
    """Reference and forcing data locations (relative to project root)."""
    farm_zones: str
    environmental_systems: str
    other_systems: str
    trigger_bores: str
    dam_extractions: Optional[str] = None
    forcing: Optional[str] = None


@dataclass
class Scenario:
    """Complete scenario configuration."""
    metadata: ScenarioMetadata
    surface_water: SurfaceWaterConfig
    groundwater: GroundwaterConfig
    policy: PolicyConfig
    data: DataConfig
    rolling_level_years: int = 3


def _parse_date(date_str):
    """Parse date string in YYYY-MM-DD format."""
    if isinstance(date_str, date):
        return date_str
    parts = str(date_str).split("-")
    if len(parts) != 3:
        raise ValueError(f"Invalid date format: {date_str}. Expected YYYY-MM-DD")
    return date(int(parts[0]), int(parts[1]), int(parts[2]))


def _parse_month_day(value, context):
    """Parse MM-DD into a (month, day) tuple."""
    parts = str(value).split("-")
    if len(parts) != 2:
        raise ValueError(f"{context}: invalid month-day '{value}'. Expected MM-DD")
    month, day = int(parts[0]), int(parts[1])
    # leap year accepts 02-29
    date(2000, month, day)
    return month, day


def _require(data, key, context=""):
    """Get required key from dict, raise if missing."""
    if key not in data:
        ctx = f" in {context}" if context else ""
        raise KeyError(f"Missing required key '{key}'{ctx}")
    return data[key]


def _check_fraction(value, name):
    if not 0 <= value <= 1:
        raise ValueError(f"{name} must be between 0 and 1, got {value}")
    return value


def _load_surface_water(sw_data):
    defaults = SurfaceWaterConfig()
    config = SurfaceWaterConfig(
        season_start=_parse_month_day(sw_data.get("season_start", "07-01"), "surface_water.season_start"),
        first_release=_parse_month_day(sw_data.get("first_release", "08-15"), "surface_water.first_release"),
        season_end=_parse_month_day(sw_data.get("season_end", "04-30"), "surface_water.season_end"),
        timestep_days=sw_data.get("timestep_days", defaults.timestep_days),
        shared_utility_share=_check_fraction(
            sw_data.get("shared_utility_share", defaults.shared_utility_share), "shared_utility_share"),
        worst_case_loss=sw_data.get("worst_case_loss_ml", defaults.worst_case_loss),
        min_op_vol=sw_data.get("min_operating_volume_ml", defaults.min_op_vol),
        carryover_factor=_check_fraction(
            sw_data.get("carryover_factor", defaults.carryover_factor), "carryover_factor"),
        fixed_annual_losses=sw_data.get("fixed_annual_losses_ml", defaults.fixed_annual_losses),
        transfer_allocation_scenario=sw_data.get(
            "transfer_allocation_scenario", defaults.transfer_allocation_scenario),
        irrigation_areas=tuple(sw_data.get("irrigation_areas", defaults.irrigation_areas)),
        carryover_exempt=tuple(sw_data.get("carryover_exempt", [])),
        mpf_reservoir=sw_data.get("mpf_reservoir"),
        transmission_zone=sw_data.get("transmission_zone"),
        weir_zone=sw_data.get("weir_zone"),
        release_timeframe=sw_data.get("release_timeframe_days", defaults.release_timeframe),
        strict_overrun=bool(sw_data.get("strict_overrun", False)),
    )

    validate_scenario(config.transfer_allocation_scenario)
    if config.timestep_days <= 0:
        raise ValueError(f"timestep_days must be > 0, got {config.timestep_days}")
    if config.release_timeframe <= 0:
        raise ValueError(f"release_timeframe_days must be > 0, got {config.release_timeframe}")
    if config.worst_case_loss < 0 or config.min_op_vol < 0:
        raise ValueError("worst_case_loss_ml and min_operating_volume_ml must be >= 0")
    return config


def _load_groundwater(gw_data):
    defaults = GroundwaterConfig()
    config = GroundwaterConfig(
        restriction_type=gw_data.get("restriction_type", defaults.restriction_type),
        drought_trigger=_check_fraction(
            gw_data.get("drought_trigger", defaults.drought_trigger), "drought_trigger"),
        max_drought_years=gw_data.get("max_drought_years", defaults.max_drought_years),
        max_carryover_perc=_check_fraction(
            gw_data.get("max_carryover_perc", defaults.max_carryover_perc), "max_carryover_perc"),
        carryover_period=gw_data.get("carryover_period", defaults.carryover_period),
        log_bores=tuple(str(b) for b in gw_data.get("log_bores", [])),
    )
    if config.restriction_type not in RESTRICTION_POLICIES:
        available = ", ".join(RESTRICTION_POLICIES.keys())
        raise ValueError(f"Unknown restriction_type '{config.restriction_type}'. Available: {available}")
    if config.max_drought_years < 0:
        raise ValueError(f"max_drought_years must be >= 0, got {config.max_drought_years}")
    return config


def _load_policy(policy_data):
    config = PolicyConfig(
        sw_cap=policy_data.get("sw_cap", 1.0),
        gw_cap=policy_data.get("gw_cap", 0.6),
        policy_option=policy_data.get("policy_option", "default"),
        option_parameters=policy_data.get("option_parameters", {}) or {},
    )
    if config.sw_cap < 0 or config.gw_cap < 0:
        raise ValueError(f"sw_cap and gw_cap must be >= 0, got {config.sw_cap}, {config.gw_cap}")
    if config.policy_option not in POLICY_OPTIONS:
        available = ", ".join(POLICY_OPTIONS.keys())
        raise ValueError(f"Unknown policy_option '{config.policy_option}'. Available: {available}")
    return config


def _load_data(data_section):
    return DataConfig(
        farm_zones=_require(data_section, "farm_zones", "data"),
        environmental_systems=_require(data_section, "environmental_systems", "data"),
        other_systems=_require(data_section, "other_systems", "data"),
        trigger_bores=_require(data_section, "trigger_bores", "data"),
        dam_extractions=data_section.get("dam_extractions"),
        forcing=data_section.get("forcing"),
    )


def load_scenario(path):
    """Load scenario from YAML file and return structured Scenario object.

    Args:
        path: Path to scenario YAML file (string or Path object)

    Returns:
        Scenario object with all configuration loaded

    Raises:
        FileNotFoundError: If scenario file doesn't exist
        KeyError: If required configuration is missing
        ValueError: If configuration values are invalid
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Scenario file not found: {path}")

    with open(path, "r") as f:
        data = yaml.safe_load(f)

    scenario_data = _require(data, "scenario", "root")
    simulation_data = _require(data, "simulation", "root")

    metadata = ScenarioMetadata(
        name=_require(scenario_data, "name", "scenario"),
        description=_require(scenario_data, "description", "scenario"),
        version=str(_require(scenario_data, "version", "scenario")),
        start_date=_parse_date(_require(simulation_data, "start_date", "simulation")),
        end_date=_parse_date(_require(simulation_data, "end_date", "simulation")),
    )
    if metadata.end_date < metadata.start_date:
        raise ValueError(f"end_date {metadata.end_date} is before start_date {metadata.start_date}")

    return Scenario(
        metadata=metadata,
        surface_water=_load_surface_water(data.get("surface_water", {}) or {}),
        groundwater=_load_groundwater(data.get("groundwater", {}) or {}),
        policy=_load_policy(data.get("policy", {}) or {}),
        data=_load_data(_require(data, "data", "root")),
        rolling_level_years=simulation_data.get("rolling_level_years", 3),
    )
