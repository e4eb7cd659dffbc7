"""Students, subjects and enrollments. Read-only for the attendance core."""
from datetime import datetime
from typing import Optional

import pymongo
from beanie import Document, Indexed
from pydantic import BaseModel, Field


class Student(BaseModel):
    id: Optional[str] = None
    student_number: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    section: str = ""
    guardian_name: Optional[str] = None
    guardian_email: Optional[str] = None
    status: str = "active"  # active, inactive, graduated, transferred, suspended, dropped

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_active(self) -> bool:
        return self.status == "active"


class Subject(BaseModel):
    id: Optional[str] = None
    subject_code: str
    subject_name: str


class StudentDocument(Document):
    student_number: Indexed(str)
    first_name: str
    last_name: str
    email: Optional[str] = None
    section: str = ""
    guardian_name: Optional[str] = None
    guardian_email: Optional[str] = None
    status: str = "active"
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "students"

    def to_student(self) -> Student:
        return Student(
            id=str(self.id),
            student_number=self.student_number,
            first_name=self.first_name,
            last_name=self.last_name,
            email=self.email,
            section=self.section,
            guardian_name=self.guardian_name,
            guardian_email=self.guardian_email,
            status=self.status,
        )


class SubjectDocument(Document):
    subject_code: Indexed(str, unique=True)
    subject_name: str

    class Settings:
        name = "subjects"

    def to_subject(self) -> Subject:
        return Subject(id=str(self.id), subject_code=self.subject_code, subject_name=self.subject_name)


class EnrollmentDocument(Document):
    student_id: str
    subject_id: str
    enrollment_date: datetime = Field(default_factory=datetime.utcnow)
    is_active: bool = True

    class Settings:
        name = "enrollments"
        indexes = [
            pymongo.IndexModel(
                [("student_id", pymongo.ASCENDING), ("subject_id", pymongo.ASCENDING)],
                unique=True,
            ),
            "subject_id",
        ]
