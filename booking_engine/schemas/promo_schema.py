"""Promo code models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PromoKind(str, Enum):
    FLAT = "flat"
    PERCENT = "percent"
    # Zero-cost checkout for development and demo flows only.
    DEV_BYPASS = "dev_bypass"


class PromoCode(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    kind: PromoKind
    value: int = Field(default=0, ge=0, description="Cents for FLAT, percent for PERCENT")
    expires_at: Optional[datetime] = None
    max_uses: Optional[int] = Field(default=None, ge=1)
    description: str = ""

    @model_validator(mode="after")
    def _check_value(self) -> "PromoCode":
        if self.kind == PromoKind.PERCENT and self.value > 100:
            raise ValueError("percent promo value must be between 0 and 100")
        return self

    @property
    def is_dev_bypass(self) -> bool:
        return self.kind == PromoKind.DEV_BYPASS
