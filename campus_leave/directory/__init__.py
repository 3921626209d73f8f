"""Directory module — organizations, classes and users read by the engine."""
