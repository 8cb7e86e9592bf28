"""Tire retailer inventory ledger, pricing, packaging and order fulfillment."""
