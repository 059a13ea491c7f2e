"""Batch Alert Desk application package."""
