"""Default commission settings profiles. Exactly one profile is active at a time."""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.orm import Session

from orderdesk.errors import ConflictError, NotFoundError, ValidationError
from orderdesk.logging_config import get_logger
from orderdesk.models import DefaultCommissionSettings

logger = get_logger("commission_service")

DEFAULT_PROFILE_NAME = "default"

DEFAULT_COMMISSION_VALUES: dict[str, int] = {
    "base_commission": 5000,
    "tier78_bonus": 4000,
    "tier80_bonus": 4500,
    "tier82_bonus": 5000,
    "upsell_bonus": 1000,
    "upsell_min_percent": 30,
    "pack2_bonus": 500,
    "pack2_min_percent": 50,
    "pack4_bonus": 600,
    "pack4_min_percent": 25,
}
COMMISSION_FIELDS = tuple(DEFAULT_COMMISSION_VALUES)


def profile_to_dict(profile: DefaultCommissionSettings) -> dict[str, Any]:
    data = {field: getattr(profile, field) for field in COMMISSION_FIELDS}
    data.update({"id": str(profile.id), "name": profile.name, "is_active": profile.is_active})
    return data


def get_active_settings(db: Session) -> dict[str, Any]:
    profile = db.query(DefaultCommissionSettings).filter(DefaultCommissionSettings.is_active.is_(True)).first()
    if profile is None:
        return {**DEFAULT_COMMISSION_VALUES, "id": None, "name": DEFAULT_PROFILE_NAME, "is_active": True}
    return profile_to_dict(profile)


def update_active_settings(db: Session, values: dict[str, int]) -> dict[str, Any]:
    profile = db.query(DefaultCommissionSettings).filter(DefaultCommissionSettings.is_active.is_(True)).first()
    if profile is None:
        profile = (
            db.query(DefaultCommissionSettings)
            .filter(DefaultCommissionSettings.name == DEFAULT_PROFILE_NAME)
            .first()
        )
    if profile is None:
        profile = DefaultCommissionSettings(id=uuid.uuid4(), name=DEFAULT_PROFILE_NAME)
        db.add(profile)
    for field in COMMISSION_FIELDS:
        setattr(profile, field, values[field])
    profile.is_active = True
    db.commit()
    logger.info("Active commission settings updated", extra={"context": {"profile": profile.name}})
    return profile_to_dict(profile)


def list_profiles(db: Session) -> list[dict[str, Any]]:
    profiles = db.query(DefaultCommissionSettings).order_by(DefaultCommissionSettings.name).all()
    return [profile_to_dict(profile) for profile in profiles]


def create_profile(db: Session, name: str, values: dict[str, int]) -> dict[str, Any]:
    name = name.strip()
    if not name:
        raise ValidationError("Profile name is required", "INVALID_PROFILE_NAME")
    if db.query(DefaultCommissionSettings).filter(DefaultCommissionSettings.name == name).first():
        raise ConflictError(f"Profile {name} already exists", "PROFILE_EXISTS")
    profile = DefaultCommissionSettings(id=uuid.uuid4(), name=name, is_active=False)
    for field in COMMISSION_FIELDS:
        setattr(profile, field, values[field])
    db.add(profile)
    db.commit()
    return profile_to_dict(profile)


def _get_profile(db: Session, profile_id) -> DefaultCommissionSettings:
    profile = db.query(DefaultCommissionSettings).filter(DefaultCommissionSettings.id == profile_id).first()
    if not profile:
        raise NotFoundError("Commission profile not found", "PROFILE_NOT_FOUND")
    return profile


def delete_profile(db: Session, profile_id) -> None:
    profile = _get_profile(db, profile_id)
    if profile.name == DEFAULT_PROFILE_NAME:
        raise ValidationError("The default profile cannot be deleted", "CANNOT_DELETE_DEFAULT")
    db.delete(profile)
    db.commit()


def activate_profile(db: Session, profile_id) -> dict[str, Any]:
    profile = _get_profile(db, profile_id)
    db.query(DefaultCommissionSettings).filter(DefaultCommissionSettings.id != profile.id).update(
        {DefaultCommissionSettings.is_active: False}, synchronize_session=False
    )
    profile.is_active = True
    db.commit()
    logger.info(f"Commission profile activated: {profile.name}")
    return profile_to_dict(profile)
