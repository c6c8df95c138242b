# State management for the catchment policy allocation engine
# Layer 3: Simulation Engine
#
# Dataclasses for tracking policy state across irregular time steps.
# All state is owned by a single PolicyState aggregate and updated in-place
# by the ledger, scheduler and groundwater state machine.
#
# Series indexed by within-season time step or by model year count from 1;
# index 0 of those arrays is unused.

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

import numpy as np

from catchment_policy.exceptions import ConfigurationError
from catchment_policy.policies.restriction_policies import BaseRestrictionPolicy, DefaultRestriction
from catchment_policy.policies.transfer_allocation import TransferAllocation

FARM = "farm"
ENVIRONMENTAL = "environmental"
OTHER = "other"
ZONE_TYPES = (FARM, ENVIRONMENTAL, OTHER)

LOSS_TYPES = ("lake_seepage", "lake_evaporation", "transmission", "operational")

DEFAULT_IRRIGATION_AREAS = ("Rochester Irrigation Area", "Campaspe Irrigation Area")

REL_TOL = 1e-9
ABS_TOL = 1e-6


def approx_equal(a, b, abs_tol=ABS_TOL):
    """Tolerance comparison used for all allocation bookkeeping."""
    return math.isclose(a, b, rel_tol=REL_TOL, abs_tol=abs_tol)


def snap_fraction(value):
    """Snap a percentage that overshoots [0, 1] by float drift back into range."""
    if value > 1.0 and approx_equal(value, 1.0):
        return 1.0
    if value < 0.0 and approx_equal(value, 0.0):
        return 0.0
    return value


def series_lengths(n_days):
    """Number of weekly and yearly slots needed for a run of n_days.

    Args:
        n_days: Length of the daily run

    Returns:
        Tuple of (n_weeks, n_years)
    """
    n_weeks = round(n_days / 7 + 1) + 7
    # one season can hold 44 weekly ticks plus the special evaluation dates
    n_weeks = max(n_weeks, 60)
    n_years = round(n_days / 356 + 1) + 1
    return n_weeks, n_years


@dataclass
class ReliabilityVolumes:
    """Volumes (ML) split by reliability class."""
    hr: float = 0.0
    lr: float = 0.0

    def total(self):
        return self.hr + self.lr

    def copy(self):
        return ReliabilityVolumes(self.hr, self.lr)


@dataclass
class ZoneEntitlement:
    """Water entitlements for one zone by system and reliability class.

    Environmental and other-delivery zones hold their entitlement in `local`.

    Args:
        local: Local catchment system entitlement
        transfer: Interstate-transfer system entitlement
        farm: Entitlement attached to cropped area (farm zones only)
    """
    local: ReliabilityVolumes = field(default_factory=ReliabilityVolumes)
    transfer: ReliabilityVolumes = field(default_factory=ReliabilityVolumes)
    farm: ReliabilityVolumes = field(default_factory=ReliabilityVolumes)

    def is_empty(self):
        return self.local.total() + self.transfer.total() == 0.0


@dataclass
class SystemVolumes:
    """Per-zone volumes for the two systems a zone can draw from."""
    local: ReliabilityVolumes = field(default_factory=ReliabilityVolumes)
    transfer: ReliabilityVolumes = field(default_factory=ReliabilityVolumes)


@dataclass
class ZoneOrders:
    """Season-to-date water orders per time step (ML)."""
    local: np.ndarray
    transfer: np.ndarray

    def reset(self):
        self.local[:] = 0.0
        self.transfer[:] = 0.0


@dataclass
class Zone:
    """A farm, environmental or other-delivery demand unit.

    Constructed once from reference tables; mutated each time the scheduler fires.
    """
    zone_id: str
    name: str
    zone_type: str
    water_system: str                 # irrigation district / delivery system name
    regulation_zone: str              # grouping used for dam-release aggregation
    entitlement: ZoneEntitlement
    orders: ZoneOrders
    yearly_carryover: Dict[str, np.ndarray]   # "hr"/"lr" -> per-year carryover
    zone_ha: float = 0.0
    crop_ha: float = 0.0
    zone_share: float = 0.0           # share of catchment HR entitlement
    avail_allocation: SystemVolumes = field(default_factory=SystemVolumes)
    allocated_to_date: SystemVolumes = field(default_factory=SystemVolumes)
    carryover_state: ReliabilityVolumes = field(default_factory=ReliabilityVolumes)

    def __post_init__(self):
        if self.zone_type not in ZONE_TYPES:
            raise ConfigurationError(
                f"Unknown zone type '{self.zone_type}' for zone '{self.zone_id}'. "
                f"Valid types: {', '.join(ZONE_TYPES)}"
            )

    @property
    def is_farm(self):
        return self.zone_type == FARM

    def available_local(self):
        """Local-system allocation plus carryover still available (ML)."""
        return self.carryover_state.total() + self.avail_allocation.local.total()


def create_zone(zone_id, zone_type, entitlement, n_weeks, n_years, name=None,
                water_system="", regulation_zone=None, zone_ha=0.0, crop_ha=0.0):
    """Build a Zone with zeroed order and carryover series.

    Args:
        zone_id: Unique zone identifier
        zone_type: One of "farm", "environmental", "other"
        entitlement: ZoneEntitlement for the zone
        n_weeks: Weekly slots to allocate
        n_years: Yearly slots to allocate
        name: Display name (defaults to zone_id)
        water_system: Irrigation district or delivery system
        regulation_zone: Release aggregation group (defaults to zone_id)
        zone_ha: Zone area (ha)
        crop_ha: Cropped area (ha)

    Returns:
        Zone
    """
    return Zone(
        zone_id=zone_id,
        name=name or zone_id,
        zone_type=zone_type,
        water_system=water_system,
        regulation_zone=regulation_zone or zone_id,
        entitlement=entitlement,
        orders=ZoneOrders(local=np.zeros(n_weeks + 1), transfer=np.zeros(n_weeks + 1)),
        yearly_carryover={"hr": np.zeros(n_years + 2), "lr": np.zeros(n_years + 2)},
        zone_ha=zone_ha,
        crop_ha=crop_ha,
    )


class RecordIndex:
    """Ordered record collection with lookup by identifier.

    Records are kept in a list; an id -> position map gives constant-time lookup.
    """

    def __init__(self, records, key="zone_id"):
        self._records = []
        self._positions = {}
        self._key = key
        for record in records:
            self.add(record)

    def add(self, record):
        record_id = getattr(record, self._key)
        if record_id in self._positions:
            raise ConfigurationError(f"Duplicate identifier '{record_id}'")
        self._positions[record_id] = len(self._records)
        self._records.append(record)

    def __getitem__(self, record_id):
        try:
            return self._records[self._positions[record_id]]
        except KeyError:
            raise KeyError(f"Unknown identifier '{record_id}'") from None

    def __contains__(self, record_id):
        return record_id in self._positions

    def __iter__(self):
        return iter(self._records)

    def __len__(self):
        return len(self._records)

    def ids(self):
        return list(self._positions.keys())

    def of_type(self, zone_type):
        return [r for r in self._records if r.zone_type == zone_type]


@dataclass
class SystemLedger:
    """Catchment-level HR/LR volumes or fractions for each water system."""
    local: ReliabilityVolumes = field(default_factory=ReliabilityVolumes)
    transfer: ReliabilityVolumes = field(default_factory=ReliabilityVolumes)
    environment: ReliabilityVolumes = field(default_factory=ReliabilityVolumes)
    other: ReliabilityVolumes = field(default_factory=ReliabilityVolumes)

    def items(self):
        return [
            ("local", self.local),
            ("transfer", self.transfer),
            ("environment", self.environment),
            ("other", self.other),
        ]


@dataclass
class ReserveSeries:
    """HR, LR and operational reserve volumes (ML) over time steps or years."""
    hr: np.ndarray
    lr: np.ndarray
    op: np.ndarray

    @classmethod
    def zeros(cls, n):
        return cls(hr=np.zeros(n), lr=np.zeros(n), op=np.zeros(n))


@dataclass
class EnvironmentState:
    """Environmental water accounting for the current season.

    Args:
        hr_entitlement: HR entitlement after fixed annual losses (ML)
        lr_entitlement: LR entitlement (ML)
        fixed_annual_losses: Losses deducted from HR entitlement each year (ML)
        season_order: Environmental orders accumulated this season (ML)
        water_order: Most recent environmental order (ML)
    """
    hr_entitlement: float
    lr_entitlement: float
    fixed_annual_losses: float = 1656.0
    season_order: float = 0.0
    water_order: float = 0.0

    @classmethod
    def from_entitlements(cls, hr_entitlement, lr_entitlement, fixed_annual_losses=1656.0):
        return cls(
            hr_entitlement=hr_entitlement - fixed_annual_losses,
            lr_entitlement=lr_entitlement,
            fixed_annual_losses=fixed_annual_losses,
        )

    def reset_season(self):
        self.season_order = 0.0
        self.water_order = 0.0


@dataclass
class SurfaceWaterState:
    """Surface-water allocation state for the catchment.

    Holds the zone records, the seasonal clock, catchment totals per water
    system and the weekly/yearly reserve and carryover series.
    """
    zones: RecordIndex
    env_state: EnvironmentState
    transfer: TransferAllocation
    n_weeks: int
    n_years: int

    # Seasonal clock (month, day)
    season_start: tuple = (7, 1)
    first_release: tuple = (8, 15)
    season_end: tuple = (4, 30)
    timestep_days: int = 7
    current_time: int = 1
    current_year: int = 1
    next_run: Optional[date] = None
    last_run: Optional[date] = None
    off_season: bool = False                    # between season end and the next season start
    season_end_date: Optional[date] = None
    first_release_date: Optional[date] = None

    # Operating rules
    shared_utility_share: float = 0.82
    worst_case_loss: float = 18560.0
    min_op_vol: float = 1024.0
    carryover_factor: float = 0.95
    irrigation_areas: tuple = DEFAULT_IRRIGATION_AREAS
    carryover_exempt: tuple = ()
    mpf_reservoir: Optional[str] = None         # other-delivery zone funding minimum passing flows
    transmission_zone: Optional[str] = None     # regulation zone charged transmission loss
    weir_zone: Optional[str] = None             # regulation zone charged weir operational loss
    strict_overrun: bool = False

    # Catchment totals
    hr_entitlement: float = 0.0
    lr_entitlement: float = 0.0
    farm_hr_entitlement: float = 0.0
    farm_lr_entitlement: float = 0.0
    total_allocated: float = 0.0
    total_water_orders: float = 0.0
    avail_allocation: SystemLedger = field(default_factory=SystemLedger)
    cumu_allocation: SystemLedger = field(default_factory=SystemLedger)
    perc_entitlement: SystemLedger = field(default_factory=SystemLedger)
    adj_perc_entitlement: SystemLedger = field(default_factory=SystemLedger)

    # Series (filled in __post_init__)
    shared_pool: np.ndarray = None
    proj_inflow: np.ndarray = None
    water_losses: Dict[str, np.ndarray] = None
    reserves: ReserveSeries = None
    ts_reserves: ReserveSeries = None
    yearly_carryover: np.ndarray = None
    carryover_state: np.ndarray = None
    env_orders: np.ndarray = None
    other_orders: np.ndarray = None

    unmet_orders: List[dict] = field(default_factory=list)

    def __post_init__(self):
        weeks = self.n_weeks + 1
        years = self.n_years + 2
        if self.shared_pool is None:
            self.shared_pool = np.zeros(weeks)
        if self.proj_inflow is None:
            self.proj_inflow = np.zeros(weeks)
        if self.water_losses is None:
            self.water_losses = {name: np.zeros(weeks) for name in LOSS_TYPES}
        if self.reserves is None:
            self.reserves = ReserveSeries.zeros(years)
        if self.ts_reserves is None:
            self.ts_reserves = ReserveSeries.zeros(weeks)
        if self.yearly_carryover is None:
            self.yearly_carryover = np.zeros(years)
        if self.carryover_state is None:
            self.carryover_state = np.zeros(years)
        if self.env_orders is None:
            self.env_orders = np.zeros(weeks)
        if self.other_orders is None:
            self.other_orders = np.zeros(weeks)

    def farm_zones(self):
        return self.zones.of_type(FARM)

    def recalculate_entitlements(self):
        """Recompute catchment entitlement totals and zone shares from zone records.

        Catchment HR/LR entitlement is the sum of every zone's local entitlement;
        farm totals sum the cropped-area entitlement of farm zones. The
        environmental HR entitlement is reduced by fixed annual losses.
        """
        hr_ent = lr_ent = farm_hr = farm_lr = env_hr = env_lr = 0.0

        for zone in self.zones:
            hr_ent += zone.entitlement.local.hr
            lr_ent += zone.entitlement.local.lr
            if zone.zone_type == FARM:
                farm_hr += zone.entitlement.farm.hr
                farm_lr += zone.entitlement.farm.lr
            elif zone.zone_type == ENVIRONMENTAL:
                env_hr += zone.entitlement.local.hr
                env_lr += zone.entitlement.local.lr

        self.hr_entitlement = hr_ent
        self.lr_entitlement = lr_ent
        self.farm_hr_entitlement = farm_hr
        self.farm_lr_entitlement = farm_lr

        for zone in self.zones:
            zone.zone_share = zone.entitlement.local.hr / hr_ent if hr_ent > 0 else 0.0

        self.env_state.hr_entitlement = env_hr - self.env_state.fixed_annual_losses
        self.env_state.lr_entitlement = env_lr
        return hr_ent, lr_ent

    def reliability_carryover(self, reliability):
        """Catchment carryover into the current year for one reliability class."""
        return sum(z.yearly_carryover[reliability][self.current_year] for z in self.zones)

    def check_timestep(self):
        if self.current_time > self.n_weeks:
            raise ConfigurationError(
                f"Time step {self.current_time} exceeds the {self.n_weeks} weekly slots allocated"
            )

    def check_year(self):
        if self.current_year + 1 >= len(self.reserves.hr):
            raise ConfigurationError(
                f"Year {self.current_year + 1} exceeds the {self.n_years} yearly slots allocated"
            )


@dataclass
class GroundwaterZoneRecord:
    """Groundwater licence bookkeeping for one zone."""
    zone_id: str
    trading_zone: str
    entitlement: float
    trigger_bore: str
    trigger_level: float = 0.0
    proportion: float = 0.0
    allocation: float = 0.0          # licence volume for the season (ML)
    carryover: float = 0.0
    used: float = 0.0


@dataclass
class GroundwaterState:
    """Groundwater licensing and restriction state.

    Runs on an annual clock keyed on season start/end month and day.
    """
    zones: RecordIndex
    trigger_tables: dict                  # bore id -> table name -> DataFrame(Depth, Proportion)
    restriction: BaseRestrictionPolicy = field(default_factory=DefaultRestriction)
    season_start: tuple = (7, 1)
    season_end: tuple = (4, 30)
    current_year: int = 1
    drought_count: int = 0
    sw_perc_entitlement: float = 0.0
    max_carryover_perc: float = 0.25
    carryover_period: int = 1
    gw_levels: dict = field(default_factory=dict)
    initial_gw_levels: dict = field(default_factory=dict)
    log_bores: tuple = ()
    annual_log: List[dict] = field(default_factory=list)

    def zones_for_bore(self, bore_id):
        return [z for z in self.zones if z.trigger_bore == bore_id]


@dataclass
class FarmAllocation:
    """Water available to one farm zone for the next farm decision (ML)."""
    sw_hr: float = 0.0
    sw_lr: float = 0.0
    gw_hr: float = 0.0
    gw_lr: float = 0.0


@dataclass
class PolicyState:
    """Aggregate of all policy state passed into each component call."""
    sw_state: SurfaceWaterState
    gw_state: GroundwaterState
    dam_extractions: Optional[object] = None    # pd.Series indexed by date (ML)
    sw_cap: float = 1.0
    gw_cap: float = 0.6
    release_timeframe: int = 14
    applied_options: List[str] = field(default_factory=list)
    tick_log: List[dict] = field(default_factory=list)
