"""API route handlers."""
from . import plaid, transactions, webhooks

__all__ = ["plaid", "transactions", "webhooks"]
