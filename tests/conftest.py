"""
Shared pytest fixtures for the catchment policy engine tests.

Builds a small catchment entirely in memory:
- two farm zones (one inside an irrigation area with transfer entitlement)
- one environmental holding
- one other-delivery system
Catchment totals are HR 10000 ML and LR 5000 ML.
"""

import pandas as pd
import pytest

from catchment_policy.policies import DefaultRestriction, TransferAllocation
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
)

N_WEEKS = 60
N_YEARS = 4

IRRIGATION_AREA = "Rochester Irrigation Area"


def make_zone(zone_id, zone_type, hr, lr, transfer_hr=0.0, water_system="", regulation_zone=None):
    """Zone with local entitlement (and optional transfer HR) and zeroed series."""
    entitlement = ZoneEntitlement(
        local=ReliabilityVolumes(hr, lr),
        transfer=ReliabilityVolumes(transfer_hr, 0.0),
        farm=ReliabilityVolumes(hr, lr) if zone_type == FARM else ReliabilityVolumes(),
    )
    return create_zone(
        zone_id=zone_id,
        zone_type=zone_type,
        entitlement=entitlement,
        n_weeks=N_WEEKS,
        n_years=N_YEARS,
        water_system=water_system,
        regulation_zone=regulation_zone,
    )


def make_catchment_zones():
    return [
        make_zone("A", FARM, 3000.0, 1500.0, transfer_hr=1000.0,
                  water_system=IRRIGATION_AREA, regulation_zone="Zone 4C"),
        make_zone("B", FARM, 2000.0, 1000.0, water_system="Campaspe River", regulation_zone="Zone 1A"),
        make_zone("ENV", ENVIRONMENTAL, 4000.0, 2000.0, regulation_zone="Zone 4C"),
        make_zone("URBAN", OTHER, 1000.0, 500.0, regulation_zone="Zone 1A"),
    ]


def make_sw_state(zones=None, **kwargs):
    """SurfaceWaterState over the given zones with totals recalculated."""
    zones = RecordIndex(zones if zones is not None else make_catchment_zones())
    env_hr = sum(z.entitlement.local.hr for z in zones.of_type(ENVIRONMENTAL))
    env_lr = sum(z.entitlement.local.lr for z in zones.of_type(ENVIRONMENTAL))
    sw_state = SurfaceWaterState(
        zones=zones,
        env_state=EnvironmentState.from_entitlements(env_hr, env_lr),
        transfer=TransferAllocation(scenario="high"),
        n_weeks=N_WEEKS,
        n_years=N_YEARS,
        irrigation_areas=(IRRIGATION_AREA,),
        **kwargs,
    )
    sw_state.recalculate_entitlements()
    return sw_state


def make_trigger_tables():
    """Depth -> proportion tables for bores B1 and B2."""
    depths = [0.0, 5.0, 10.0, 15.0, 20.0]
    tables = {
        "current": [1.0, 1.0, 0.8, 0.5, 0.2],
        "drought": [1.0, 0.7, 0.5, 0.3, 0.1],
        "nondrought": [1.0, 1.0, 1.0, 0.8, 0.6],
    }
    return {
        bore: {name: pd.DataFrame({"Depth": depths, "Proportion": props}) for name, props in tables.items()}
        for bore in ("B1", "B2")
    }


def make_gw_state(restriction=None):
    zones = RecordIndex([
        GroundwaterZoneRecord(zone_id="A", trading_zone="T1", entitlement=1000.0, trigger_bore="B1"),
        GroundwaterZoneRecord(zone_id="B", trading_zone="T2", entitlement=500.0, trigger_bore="B2"),
    ])
    return GroundwaterState(
        zones=zones,
        trigger_tables=make_trigger_tables(),
        restriction=restriction or DefaultRestriction(),
        log_bores=("B1", "B2"),
    )


@pytest.fixture
def sw_state():
    """Surface-water state for the four-zone catchment."""
    return make_sw_state()


@pytest.fixture
def gw_state():
    """Groundwater state with two licensed zones on two trigger bores."""
    return make_gw_state()


@pytest.fixture
def policy_state(sw_state, gw_state):
    """PolicyState aggregate over the in-memory catchment."""
    return PolicyState(sw_state=sw_state, gw_state=gw_state)


@pytest.fixture
def reference_data_dir(tmp_path):
    """Reference tables on disk in the layout the data loader expects."""
    policy_dir = tmp_path / "data" / "policy"
    policy_dir.mkdir(parents=True)

    (policy_dir / "farm_zones.csv").write_text(
        "# Farm zone entitlements (ML/year)\n"
        "ZoneID,FULLNAME,WatSystem,RegZone,TrigBore,zone_ha,agric_ha,wat_HR,wat_LR,goul_HR,goul_LR,gw_Ent\n"
        f"100,North,{IRRIGATION_AREA},Zone 4C,B1,1000,800,3000,1500,1000,0,1000\n"
        "110,South,Campaspe River,Zone 1A,B2,900,600,2000,1000,0,0,500\n"
        "120,Dryland,Campaspe River,Zone 1A,,500,100,500,0,0,0,0\n"
    )
    (policy_dir / "environmental_systems.csv").write_text(
        "Water System,RegZone,HR_Entitlement,LR_Entitlement\n"
        "Environment,Zone 4C,4000,2000\n"
    )
    (policy_dir / "other_systems.csv").write_text(
        "Water System,RegZone,HR_Entitlement,LR_Entitlement\n"
        "Urban,Zone 1A,1000,500\n"
        "Passing Flow Reserve,Zone 1A,600,0\n"
    )
    (policy_dir / "dam_extractions.csv").write_text(
        "Date,Extraction\n"
        "2010-07-08,25.5\n"
    )

    for bore in ("B1", "B2"):
        bore_dir = policy_dir / "trigger_bores" / bore
        bore_dir.mkdir(parents=True)
        for name in ("current", "drought", "nondrought"):
            (bore_dir / f"{name}_trigger.csv").write_text(
                "Depth,Proportion\n0,1.0\n10,0.8\n20,0.4\n"
            )

    return tmp_path


@pytest.fixture
def scenario_file(reference_data_dir):
    """Scenario YAML pointing at the on-disk reference tables."""
    path = reference_data_dir / "scenario.yaml"
    path.write_text(
        "scenario:\n"
        "  name: test_run\n"
        "  description: Small catchment for tests\n"
        "  version: '0.1'\n"
        "simulation:\n"
        "  start_date: 2010-06-25\n"
        "  end_date: 2011-07-10\n"
        "surface_water:\n"
        "  mpf_reservoir: Passing Flow Reserve\n"
        "  transmission_zone: Zone 4C\n"
        "  weir_zone: Zone 1A\n"
        "groundwater:\n"
        "  log_bores: ['B1', 'B2']\n"
        "data:\n"
        "  farm_zones: data/policy/farm_zones.csv\n"
        "  environmental_systems: data/policy/environmental_systems.csv\n"
        "  other_systems: data/policy/other_systems.csv\n"
        "  trigger_bores: data/policy/trigger_bores\n"
        "  dam_extractions: data/policy/dam_extractions.csv\n"
    )
    return path


@pytest.fixture
def forcing_frame():
    """Daily forcing for 2010-06-25 .. 2011-07-10 with steady flows and orders."""
    dates = pd.date_range("2010-06-25", "2011-07-10", freq="D")
    n = len(dates)
    return pd.DataFrame({
        "dam_volume": [180000.0] * n,
        "dam_level": [62.0] * n,
        "reference_flow": [90.0] * n,
        "proj_inflow": [2800.0] * n,
        "bore_B1": [12.0] * n,
        "bore_B2": [4.0] * n,
        "sw_order_100": [40.0] * n,
        "sw_order_110": [25.0] * n,
        "gw_order_100": [2.0] * n,
        "gw_order_110": [1.0] * n,
    }, index=dates)
