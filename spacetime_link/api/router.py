from fastapi import APIRouter

from spacetime_link.api import routes_spacetime

api_router = APIRouter()

api_router.include_router(routes_spacetime.router, prefix="/spacetime", tags=["spacetime"])
