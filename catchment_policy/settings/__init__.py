# Scenario configuration for the catchment policy engine
# Layer 2: Design configuration

from catchment_policy.settings.loader import Scenario, load_scenario

__all__ = ["Scenario", "load_scenario"]
