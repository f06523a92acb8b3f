"""Marketplace business rules on top of storage."""
