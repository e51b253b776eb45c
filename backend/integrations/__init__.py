"""External API integrations.

This package contains:
- Provider protocol: Common interface for bank aggregation providers
- Provider exceptions: Typed errors raised by provider clients
- Plaid client: Integration with the Plaid API
"""

from integrations.provider_protocol import (
    AggregationProvider,
    ProviderAccount,
    ProviderItem,
    ProviderTransaction,
    TransactionSyncPage,
)

__all__ = [
    "AggregationProvider",
    "ProviderAccount",
    "ProviderItem",
    "ProviderTransaction",
    "TransactionSyncPage",
]
