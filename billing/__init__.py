"""Billing engine: amount resolution, overage, invoice ledger and lifecycle, closeout."""
