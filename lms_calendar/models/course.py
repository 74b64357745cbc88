# lms_calendar/models/course.py
from sqlalchemy import Column, ForeignKey, Integer, String, UniqueConstraint

from lms_calendar.db.base import Base


class Course(Base):
    """
    Minimal course record: only what ownership and access checks need.
    """

    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    owner_id = Column(Integer, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Course id={self.id} owner_id={self.owner_id}>"


class CourseEnrollment(Base):
    """
    A student enrolled in a course. Enrolled users may join the course's rooms.
    """

    __tablename__ = "course_enrollments"

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(
        Integer,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(Integer, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint(
            "course_id",
            "user_id",
            name="uq_course_enrollments_course_user",
        ),
    )
