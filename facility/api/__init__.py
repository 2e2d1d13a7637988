"""HTTP API for the facility dashboard."""
