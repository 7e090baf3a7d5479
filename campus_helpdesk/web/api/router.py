from fastapi.routing import APIRouter

from campus_helpdesk.web.api import monitoring
from campus_helpdesk.web.api.v1.auth import views as v1_auth_views
from campus_helpdesk.web.api.v1.tickets import views as v1_tickets_views

api_router = APIRouter()
api_router.include_router(monitoring.router)
api_router.include_router(v1_auth_views.router)
api_router.include_router(v1_tickets_views.router)
