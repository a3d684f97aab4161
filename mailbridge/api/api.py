from fastapi import APIRouter

from mailbridge.api.endpoints import auth, gmail, profile

api_router = APIRouter(prefix="/api")

# Include all endpoint routers
api_router.include_router(auth.router)
api_router.include_router(profile.router)
api_router.include_router(gmail.router)
