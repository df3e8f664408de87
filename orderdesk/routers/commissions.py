from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from orderdesk.database import get_db
from orderdesk.routers.deps import ok, rate_limit, require_admin_token
from orderdesk.schemas import CommissionProfileCreate, CommissionValues
from orderdesk.services import commission_service

router = APIRouter(
    prefix="/api/commissions/default-settings",
    tags=["commissions"],
    dependencies=[Depends(rate_limit), Depends(require_admin_token)],
)


@router.get("")
def get_default_settings(db: Session = Depends(get_db)):
    return ok(commission_service.get_active_settings(db))


@router.put("")
def update_default_settings(request: CommissionValues, db: Session = Depends(get_db)):
    return ok(commission_service.update_active_settings(db, request.model_dump()))


@router.get("/all")
def list_default_settings(db: Session = Depends(get_db)):
    return ok(commission_service.list_profiles(db))


@router.post("", status_code=201)
def create_default_settings(request: CommissionProfileCreate, db: Session = Depends(get_db)):
    values = request.model_dump(exclude={"name"})
    return ok(commission_service.create_profile(db, request.name, values))


@router.delete("/{profile_id}")
def delete_default_settings(profile_id: UUID, db: Session = Depends(get_db)):
    commission_service.delete_profile(db, profile_id)
    return ok(None, message="Commission profile deleted")


@router.put("/{profile_id}/activate")
def activate_default_settings(profile_id: UUID, db: Session = Depends(get_db)):
    return ok(commission_service.activate_profile(db, profile_id))
