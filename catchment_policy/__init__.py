# Catchment water policy allocation engine
#
# Layer 1: reference data (data/policy), Layer 2: configuration (settings,
# policies), Layer 3: simulation engine (simulation).

__version__ = "0.1.0"
