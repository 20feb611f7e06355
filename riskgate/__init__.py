"""
riskgate - risk-gated trading decision engine.

Turns a stream of timestamped directional signals into at most one pending
order per closed bar, sized to a fixed share of equity, and manages the
resulting positions (partial close, breakeven, ATR trailing) until they close.

Subpackages:
- lib: configuration, logging, time utilities, constants
- api: venue data models, collaborator interfaces, indicators, paper venue
- signals: signal records, buffers, sources, confirmation pipeline
- risk: risk gate, admission filters, position sizing, stop geometry
- trading: order placement, position lifecycle, error recovery, engine
"""

__version__ = "0.1.0"
