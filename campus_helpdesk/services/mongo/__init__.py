"""MongoDB service."""
