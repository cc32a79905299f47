"""ETF rotation advisor: momentum signal engine and portfolio reconciliation."""

__version__ = "0.1.0"
