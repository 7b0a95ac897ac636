"""Progress event emitted for every unit status transition."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .execution_state import UnitStatus


class ProgressEvent(BaseModel):
    """A single unit status transition as seen by subscribers."""

    model_config = ConfigDict(frozen=True)

    unit_id: str = Field(..., description="Unit that changed status")
    tab_id: Optional[str] = Field(default=None, description="Tab owning the unit")
    old_status: UnitStatus
    new_status: UnitStatus
    timestamp: datetime
    plan_id: Optional[str] = Field(default=None, description="Plan that caused the transition")
    message: Optional[str] = Field(default=None, description="Skip reason or error text")

    def describe(self) -> str:
        text = f"{self.unit_id}: {self.old_status.value} -> {self.new_status.value}"
        if self.message:
            text += f" ({self.message})"
        return text
