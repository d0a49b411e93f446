"""HTTP API for the retrieval service."""
