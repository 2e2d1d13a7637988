"""
Facility status service.

Tracks whether agent processes are working or idle from the JSONL activity
logs they write, and serves that state to the facility dashboard.

Modules:
- config: environment settings and the agent roster
- services: tail reading, identity resolution, liveness cache, activity
  clock, file watching, registration registry, profile store
- api: FastAPI routes
- main: application factory and server entry point
"""

__version__ = "1.0.0"
