"""
Domain models.

Modules:
  market     - ``Instrument``, ``DailyBar``
  signal     - ``Score``, ``SignalHolding``, ``Signal``
  portfolio  - holdings, allocation config, snapshots, reconciliation results
  meta       - ``RunMetadata`` audit record
"""
