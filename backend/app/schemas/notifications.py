from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class NotificationOut(BaseModel):
    id: str
    user_id: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: datetime
