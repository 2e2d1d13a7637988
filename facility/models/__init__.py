"""Pydantic models for on-disk records and API payloads."""
