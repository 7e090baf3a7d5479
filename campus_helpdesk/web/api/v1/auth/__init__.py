"""Authentication API."""
