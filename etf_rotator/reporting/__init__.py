"""
Terminal output for CLI commands.

Modules:
  formatters - ASCII renderings of signals, portfolios, classification and advice
"""
