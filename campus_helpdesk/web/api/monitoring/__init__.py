"""API for checking project state."""
from campus_helpdesk.web.api.monitoring.views import router

__all__ = ["router"]
