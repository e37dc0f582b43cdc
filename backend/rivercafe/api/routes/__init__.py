"""API routes."""

from fastapi import APIRouter

from rivercafe.api.routes import accounting, admin, auth, canteen, it, student

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(accounting.router, prefix="/accounting", tags=["accounting"])
api_router.include_router(canteen.router, prefix="/canteen", tags=["canteen"])
api_router.include_router(student.router, prefix="/student", tags=["student"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
api_router.include_router(it.router, prefix="/it", tags=["it"])
