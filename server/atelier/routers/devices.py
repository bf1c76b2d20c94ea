from fastapi import APIRouter, Depends

from atelier.database.connection import mongo_db_dependency
from atelier.repositories.device_repository import DeviceRepository
from atelier.schemas.chat import DeviceRegister
from atelier.utils.dependencies import get_current_user


router = APIRouter(prefix="/devices", tags=["push"])


@router.post("/register")
async def register_device(payload: DeviceRegister, current_user: dict = Depends(get_current_user), db = Depends(mongo_db_dependency)):
    repo = DeviceRepository(db)
    doc = await repo.register(current_user["_id"], payload.platform, payload.token)
    return {"ok": True, "device": {"platform": doc["platform"], "token": doc["token"]}}
