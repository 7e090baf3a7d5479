"""Campus helpdesk package."""
