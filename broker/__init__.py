"""
Broker abstractions:

- paper_broker: in-memory paper broker (fills, VWAP entry, realized PnL, fees).
"""
