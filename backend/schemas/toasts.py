import enum
from datetime import datetime
from pydantic import BaseModel, Field


class ToastSeverity(str, enum.Enum):
    success = "success"
    error = "error"
    warning = "warning"
    info = "info"


class Toast(BaseModel):
    id: str
    message: str
    severity: ToastSeverity = ToastSeverity.info
    duration: int = 4000  # milliseconds
    created_at: datetime = Field(default_factory=datetime.now)
