"""HTTP API routers for gif service."""
