"""Record stores for billing data."""

from billing.store.base import BillingStore
from billing.store.memory import InMemoryBillingStore
from billing.store.postgres import PostgresBillingStore

__all__ = ["BillingStore", "InMemoryBillingStore", "PostgresBillingStore"]
