from typing import Optional
from pydantic import BaseModel, Field

# Length and range rules live in the services so the API and the CLI reject
# the same inputs with the same error body.


class RoomCreate(BaseModel):
    """Room creation request"""
    name: str = Field(..., description="Room name, unique among active rooms")
    description: Optional[str] = Field(None, description="Room description")


class RoomUpdate(BaseModel):
    """Room update request; omitted fields stay unchanged"""
    name: Optional[str] = Field(None, description="New room name")
    description: Optional[str] = Field(None, description="New room description")


class MessageCreate(BaseModel):
    message: str = Field(..., description="Message body")
    message_type: str = Field("text", description="text | system (room moderators only)")


class SystemMessageCreate(BaseModel):
    message: str = Field(..., description="System message body")


class RestrictionRequest(BaseModel):
    """Mute or ban request"""
    duration_minutes: Optional[int] = Field(None, description="Duration in minutes; omit for permanent")
    reason: Optional[str] = Field(None, description="Reason recorded in the audit log")


class LiftRestrictionRequest(BaseModel):
    """Unmute or unban request"""
    reason: Optional[str] = Field(None, description="Reason recorded in the audit log")


class ReportCreate(BaseModel):
    report_type: str = Field(..., description="Report category")
    reason: Optional[str] = Field(None, description="Free text reason")


class ReportReview(BaseModel):
    action: str = Field(..., description="resolve | dismiss | escalate")
    notes: Optional[str] = Field(None, description="Reviewer notes")
    delete_message: bool = Field(False, description="Delete the reported message")
    mute_user: bool = Field(False, description="Mute the author of the reported message")
    mute_duration: Optional[int] = Field(None, description="Mute duration in minutes (default 60)")
