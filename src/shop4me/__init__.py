"""Shop4Me order engine: orders, M-Pesa STK payments and reconciliation."""

__version__ = "0.1.0"
