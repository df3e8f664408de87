from typing import Optional

from pydantic import BaseModel, Field, field_validator


class WilayaSettingItem(BaseModel):
    wilaya_name: str = Field(min_length=1, max_length=64)
    max_delivery_days: int = Field(ge=1, le=60)
    is_active: Optional[bool] = None

    @field_validator("wilaya_name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("wilaya_name must not be blank")
        return value


class WilayaSettingsUpsert(BaseModel):
    settings: list[WilayaSettingItem]


class WilayaSettingUpdate(BaseModel):
    max_delivery_days: Optional[int] = Field(default=None, ge=1, le=60)
    is_active: Optional[bool] = None


class CommissionValues(BaseModel):
    base_commission: int = Field(ge=0)
    tier78_bonus: int = Field(ge=0)
    tier80_bonus: int = Field(ge=0)
    tier82_bonus: int = Field(ge=0)
    upsell_bonus: int = Field(ge=0)
    upsell_min_percent: int = Field(ge=0, le=100)
    pack2_bonus: int = Field(ge=0)
    pack2_min_percent: int = Field(ge=0, le=100)
    pack4_bonus: int = Field(ge=0)
    pack4_min_percent: int = Field(ge=0, le=100)


class CommissionProfileCreate(CommissionValues):
    name: str = Field(min_length=1, max_length=64)
