"""OrderDesk API - order, payment and refund reconciliation service."""

__version__ = "0.1.0"
