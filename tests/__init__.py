"""Test suite for Batch Alert Desk."""
