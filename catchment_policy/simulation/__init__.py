# Simulation engine for the catchment policy engine
# Layer 3: Simulation Engine
#
# Modules are imported directly (results pulls in matplotlib).
