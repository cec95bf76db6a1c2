"""Cost allocation, governance policy enforcement and chargeback reporting."""

__version__ = "0.1.0"
