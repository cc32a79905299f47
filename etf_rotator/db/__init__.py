"""
SQLite persistence for the run audit log and the signal history.

Modules:
  connection          - ``get_connection()`` context manager
  schema              - DDL and ``apply_schema()``
  repositories.base   - shared SQL helpers
  repositories.run_repo     - ``run_metadata`` reads/writes
  repositories.signal_repo  - ``signal_history`` reads/writes
"""
