"""
Durable JSON document state.

Modules:
  atomic           - temp-file + ``os.replace`` JSON writes
  bar_cache        - windowed per-instrument bar cache and its repositories
  portfolio_store  - user portfolio state, repositories and edit operations
"""
