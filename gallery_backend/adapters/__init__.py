"""Adapters for storage and derived artifacts."""
