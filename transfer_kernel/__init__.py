"""
Transfer Kernel - inter-store stock transfer workflow engine.

A ledger-backed state machine for store requests with:
- Partial approval, issuing and receiving per line
- Append-only per-line quantity ledger (replayable)
- Statuses derived from quantities, never set directly
- Multi-currency cost equivalence per line
"""

__version__ = "0.1.0"
