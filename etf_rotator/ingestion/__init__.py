"""
External data collaborators.

Modules:
  base            - ``DataSource`` protocol for daily bars
  tushare_client  - Tushare Pro HTTP client (httpx)
  remote_signal   - precomputed-signal service client (httpx)
  importer        - bulk holdings import document loader
"""
