"""Run orchestration on top of the simulation core."""
