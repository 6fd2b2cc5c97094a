"""
WALLET METER - API Module

FastAPI admin server:
- One-off charges and dry runs
- Wallet top-ups and re-enabling
- Ledger queries
- Traffic resets and deletions with final settlement
"""

from .server import app, create_app

__all__ = ["app", "create_app"]
