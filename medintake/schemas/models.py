from typing import List, Literal, Optional
from pydantic import BaseModel, Field

Role = Literal["user", "assistant"]
TimeOfDay = Literal["morning", "afternoon", "evening", "bedtime"]
ChatStatus = Literal["continue", "complete", "error", "cancelled"]

VALID_TIMES_OF_DAY = ("morning", "afternoon", "evening", "bedtime")

class Turn(BaseModel):
    role: Role
    content: str

class MedicationDraft(BaseModel):
    """Validated medication collected by the intake conversation."""
    medication_name: str
    dosage: str = Field(..., description="numeric-looking string, e.g. '500'")
    dosage_unit: str = Field(..., description="e.g. mg, ml")
    frequency: str = Field(..., description="e.g. daily, weekly")
    times_per_frequency: int = Field(..., ge=1)
    preferred_time: List[TimeOfDay] = Field(..., min_length=1)
    remaining_quantity: Optional[str] = None
    notes: Optional[str] = None

class ChatResult(BaseModel):
    status: ChatStatus
    assistant_reply: Optional[str] = None   # status == "continue"
    draft: Optional[MedicationDraft] = None  # status == "complete"
    message: Optional[str] = None            # status == "error"

class MedicationCreate(BaseModel):
    # manual add form defaults
    owner_id: str
    medication_name: str = Field(..., min_length=1)
    dosage: str = Field(..., min_length=1)
    dosage_unit: str = "mg"
    frequency: str = "daily"
    times_per_frequency: int = Field(default=1, ge=1)
    preferred_time: List[TimeOfDay] = Field(default_factory=lambda: ["morning"], min_length=1)
    remaining_quantity: Optional[str] = None
    notes: Optional[str] = None

class MedicationRecord(BaseModel):
    id: Optional[int] = None
    owner_id: str
    medication_name: str
    dosage: str
    dosage_unit: str
    frequency: str
    times_per_frequency: int
    preferred_time: List[TimeOfDay]
    remaining_quantity: Optional[int] = None
    notes: Optional[str] = None
    created_at: str  # ISO8601, UTC

# ---------------------------
# HTTP payloads
# ---------------------------
class IntakeStartRequest(BaseModel):
    owner_id: str = Field(..., min_length=1)

class IntakeMessageRequest(BaseModel):
    conversation_id: str
    message: str = Field(..., min_length=1)

class IntakeResetRequest(BaseModel):
    conversation_id: str

class IntakeResponse(BaseModel):
    conversation_id: str
    result: Optional[ChatResult] = None
    transcript: List[Turn] = []
    record: Optional[MedicationRecord] = None  # set once the draft is stored
