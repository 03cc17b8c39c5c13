"""FuelIntel conversational core: routing, dialog state and resilience for the fuel-price bot."""

__version__ = "0.4.0"
