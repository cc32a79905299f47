"""
Momentum signal engine.

Modules:
  filters        - ``ScoringContext``, named ``FilterStep`` chain, ``evaluate_filters``
  signal_engine  - ``SignalEngine``: refresh → score → rank → Signal
"""
