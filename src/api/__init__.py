"""HTTP API for the dispatch service."""
