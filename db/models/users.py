from sqlalchemy import Column, String

from db.database import Base

ROLE_STUDENT = "student"
ROLE_TEACHER = "teacher"
ROLE_ADMIN = "admin"

GRADER_ROLES = (ROLE_TEACHER, ROLE_ADMIN)


class User(Base):
    __tablename__ = "users"

    id = Column(String(255), primary_key=True, index=True)
    role = Column(String(50), nullable=False, default=ROLE_STUDENT)  # student / teacher / admin
    full_name = Column(String(150), nullable=True)
