"""Limit policy, billing calculation and invoicing."""
