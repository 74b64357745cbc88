# lms_calendar/models/class_session.py
from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from lms_calendar.db.base import Base


class ClassSession(Base):
    """
    One scheduled live meeting of a course on a specific local calendar date,
    together with the externally provisioned video room (if any).
    """

    __tablename__ = "class_sessions"

    id = Column(Integer, primary_key=True, index=True)

    course_id = Column(
        Integer,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    local_date = Column(Date, nullable=False, index=True)
    start_utc = Column(DateTime(timezone=True), nullable=False)
    end_utc = Column(DateTime(timezone=True), nullable=False)
    timezone = Column(String(64), nullable=False)

    title = Column(String(255), nullable=False)
    session_type = Column(String(64), nullable=False)

    # Never written back to NULL once set; see services.session_store.upsert_session
    room_id = Column(String(255), nullable=True, index=True)
    join_link = Column(String(1024), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    course = relationship("Course", backref="class_sessions")

    __table_args__ = (
        UniqueConstraint(
            "course_id",
            "local_date",
            name="uq_class_sessions_course_date",
        ),
        CheckConstraint("end_utc > start_utc", name="ck_class_sessions_window"),
    )

    def __repr__(self) -> str:
        return (
            f"<ClassSession id={self.id} course_id={self.course_id} "
            f"date={self.local_date} room_id={self.room_id}>"
        )
