"""Dynamic driver manager that probes drivers against a flattened device tree."""

__version__ = "0.8.0"