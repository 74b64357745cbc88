# lms_calendar/schemas/room.py
from datetime import date as date_type, datetime

from pydantic import BaseModel, ConfigDict, Field


class ProvisionedRoom(BaseModel):
    """
    A video room as returned by the provider (or recovered from cache/store).
    """

    room_id: str = Field(..., description="Opaque provider room identifier.")
    join_link: str | None = Field(
        None,
        description="Provider join URL; may carry a `token` query parameter.",
    )


class ProviderSessionRequest(BaseModel):
    """
    One entry of the outbound batch sent to `POST {VIDEOCHAT_URL}/api/calls`.
    """

    session_date: date_type
    start_utc: datetime
    end_utc: datetime
    title: str
    type: str


class VideoLinkRead(BaseModel):
    """
    Room details handed to the video provider once a participant's access
    has been validated.
    """

    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(..., alias="roomId")
    course_id: int = Field(..., alias="courseId")
    user_id: int = Field(..., alias="userId")
    start_time: datetime = Field(..., alias="startTime")
    end_time: datetime = Field(..., alias="endTime")


class CourseAccessRead(BaseModel):
    """
    Answer to "may this user join rooms of this course?".
    """

    allowed: bool
