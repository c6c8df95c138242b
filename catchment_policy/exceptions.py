# Exceptions for the catchment policy allocation engine
#
# Configuration errors abort a run immediately. Allocation overruns are raised
# only when strict checking is enabled; otherwise they are logged and recorded.


class ConfigurationError(ValueError):
    """Raised when reference data or scenario settings are inconsistent."""


class AllocationOverrunError(RuntimeError):
    """Water order exceeds the allocation available to a zone.

    Args:
        zone_id: Zone whose order could not be met
        requested: Volume ordered (ML)
        available: Volume available across carryover, LR and HR (ML)
        timestep: Within-season time step at which the overrun occurred
        current_date: Calendar date of the tick
    """

    def __init__(self, zone_id, requested, available, timestep=None, current_date=None):
        self.zone_id = zone_id
        self.requested = requested
        self.available = available
        self.timestep = timestep
        self.current_date = current_date
        super().__init__(
            f"Allocation overrun for zone '{zone_id}' at time step {timestep} ({current_date}): "
            f"requested {requested:.3f} ML, available {available:.3f} ML"
        )
