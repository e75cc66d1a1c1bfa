"""Adapters for the external capabilities: schema validation, format
conversion, bulk indexing, credentials, forwarding and notification."""
