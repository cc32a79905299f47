"""
Portfolio reconciliation against the latest signal.

Modules:
  reconciler - target shares, holding classification, free-play rebalance, advice
"""
