from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from orderdesk.database import get_db
from orderdesk.routers.deps import ok, rate_limit, require_admin_token
from orderdesk.schemas import WilayaSettingsUpsert, WilayaSettingUpdate
from orderdesk.services import wilaya_service

router = APIRouter(
    prefix="/api/wilaya-settings",
    tags=["wilaya-settings"],
    dependencies=[Depends(rate_limit), Depends(require_admin_token)],
)


@router.get("")
def list_wilaya_settings(db: Session = Depends(get_db)):
    return ok(wilaya_service.list_settings(db))


@router.post("")
def upsert_wilaya_settings(request: WilayaSettingsUpsert, db: Session = Depends(get_db)):
    items = [item.model_dump() for item in request.settings]
    return ok(wilaya_service.upsert_settings(db, items))


@router.get("/unique-wilayas")
def unique_wilayas(db: Session = Depends(get_db)):
    return ok(wilaya_service.list_unique_wilayas(db))


@router.post("/initialize")
def initialize_wilaya_settings(db: Session = Depends(get_db)):
    return ok(wilaya_service.initialize_settings(db))


@router.get("/delays/statistics")
def delay_statistics(db: Session = Depends(get_db)):
    return ok(wilaya_service.get_delay_statistics(db))


@router.get("/delays/{order_id}")
def order_delay(order_id: UUID, db: Session = Depends(get_db)):
    return ok(wilaya_service.get_order_delivery_delay(db, order_id))


@router.put("/{setting_id}")
def update_wilaya_setting(setting_id: UUID, request: WilayaSettingUpdate, db: Session = Depends(get_db)):
    return ok(
        wilaya_service.update_setting(
            db,
            setting_id,
            max_delivery_days=request.max_delivery_days,
            is_active=request.is_active,
        )
    )


@router.delete("/{setting_id}")
def delete_wilaya_setting(setting_id: UUID, db: Session = Depends(get_db)):
    wilaya_service.delete_setting(db, setting_id)
    return ok(None, message="Wilaya setting deleted")
