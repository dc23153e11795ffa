"""Configuration, constants, errors and telemetry shared across tradesim."""
