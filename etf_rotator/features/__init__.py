"""
Pure indicator math over daily close/turnover series.

Modules:
  indicators - RSI, SMA, weighted regression, annualized returns, volume ratio
"""
