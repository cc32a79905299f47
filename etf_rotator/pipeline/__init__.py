"""
Pipeline orchestration with an auditable run log.

Modules:
  base          - ``PipelineStage`` ABC (run → _execute → persist RunMetadata)
  signal_chain  - remote → persisted → local signal providers, ``resolve_signal``
  stages        - ``SignalStage``, ``AdviseStage``, ``default_providers``
"""
