"""Student profiles and the admin's student records (list, export, import)."""

import csv
import io
import logging
import re
from datetime import datetime
from typing import Iterable, List, Mapping, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy import func, or_
from sqlmodel import Session, select

from smartprep.auth_utils import hash_password
from smartprep.crypto_utils import PhoneCipher, mask_phone
from smartprep.errors import NotFoundError, PayloadValidationError, SecretDecryptError
from smartprep.models import Student, TestAttempt
from smartprep.utils import sanitize_text

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r"^\+?[0-9]{7,15}$")
MIN_AGE = 5
MAX_AGE = 100

EXPORT_HEADER = [
    "Full Name",
    "School Name",
    "Age",
    "Class Grade",
    "WhatsApp Number",
    "Consent Given",
    "Profile Completed",
    "Created At",
]


class ImportSummary(BaseModel):
    imported: int
    errors: int
    error_details: List[str]


class StudentView(BaseModel):
    """Student as shown to people: the phone number is masked."""

    id: int
    full_name: str
    email: str
    school_name: Optional[str] = None
    age: Optional[int] = None
    class_grade: Optional[str] = None
    whatsapp_number: Optional[str] = None
    consent_whatsapp: bool
    profile_completed: bool
    created_at: datetime
    attempt_count: Optional[int] = None


def _check_age(age: int) -> None:
    if age < MIN_AGE or age > MAX_AGE:
        raise PayloadValidationError(f"Age must be between {MIN_AGE} and {MAX_AGE}")


def _check_phone(number: str) -> str:
    cleaned = number.replace(" ", "").replace("-", "")
    if not PHONE_PATTERN.match(cleaned):
        raise PayloadValidationError("Please provide a valid WhatsApp number")
    return cleaned


def _truthy(value) -> bool:
    return str(value).strip().lower() in {"true", "1"}


class StudentDirectory:
    def __init__(self, session: Session, cipher: PhoneCipher):
        self.session = session
        self.cipher = cipher

    def get_student(self, student_id: int) -> Student:
        student = self.session.get(Student, student_id)
        if not student:
            raise NotFoundError("Student profile not found")
        return student

    def _masked_number(self, student: Student) -> Optional[str]:
        if not student.whatsapp_number:
            return None
        try:
            return mask_phone(self.cipher.decrypt(student.whatsapp_number))
        except SecretDecryptError:
            logger.warning("Could not decrypt WhatsApp number of student %s", student.id)
            return "****"

    def to_view(self, student: Student, attempt_count: Optional[int] = None) -> StudentView:
        return StudentView(
            id=student.id,
            full_name=student.full_name,
            email=student.email,
            school_name=student.school_name,
            age=student.age,
            class_grade=student.class_grade,
            whatsapp_number=self._masked_number(student),
            consent_whatsapp=student.consent_whatsapp,
            profile_completed=student.profile_completed,
            created_at=student.created_at,
            attempt_count=attempt_count,
        )

    def get_profile(self, student_id: int) -> StudentView:
        return self.to_view(self.get_student(student_id))

    def complete_profile(
        self,
        student_id: int,
        school_name: str,
        age: int,
        class_grade: str,
        consent_whatsapp: bool,
        whatsapp_number: Optional[str] = None,
    ) -> Student:
        """Fill in the profile after registration and mark it completed."""
        student = self.get_student(student_id)
        school_clean = sanitize_text(school_name)
        class_clean = sanitize_text(class_grade)
        if not school_clean:
            raise PayloadValidationError("School/Institute name is required")
        if not class_clean:
            raise PayloadValidationError("Class/Grade is required")
        _check_age(age)
        encrypted = self.cipher.encrypt(_check_phone(whatsapp_number)) if whatsapp_number else None

        student.school_name = school_clean
        student.age = age
        student.class_grade = class_clean
        student.whatsapp_number = encrypted
        student.consent_whatsapp = consent_whatsapp
        student.profile_completed = True
        student.updated_at = datetime.utcnow()
        self.session.add(student)
        self.session.commit()
        self.session.refresh(student)
        return student

    def update_profile(
        self,
        student_id: int,
        school_name: Optional[str] = None,
        age: Optional[int] = None,
        class_grade: Optional[str] = None,
        whatsapp_number: Optional[str] = None,
        consent_whatsapp: Optional[bool] = None,
    ) -> Student:
        """Change only the fields that were provided."""
        student = self.get_student(student_id)
        if school_name is not None:
            school_clean = sanitize_text(school_name)
            if not school_clean:
                raise PayloadValidationError("School/Institute name cannot be empty")
        if class_grade is not None:
            class_clean = sanitize_text(class_grade)
            if not class_clean:
                raise PayloadValidationError("Class/Grade cannot be empty")
        if age is not None:
            _check_age(age)
        encrypted = self.cipher.encrypt(_check_phone(whatsapp_number)) if whatsapp_number else None

        if school_name is not None:
            student.school_name = school_clean
        if class_grade is not None:
            student.class_grade = class_clean
        if age is not None:
            student.age = age
        if encrypted is not None:
            student.whatsapp_number = encrypted
        if consent_whatsapp is not None:
            student.consent_whatsapp = consent_whatsapp
        student.updated_at = datetime.utcnow()
        self.session.add(student)
        self.session.commit()
        self.session.refresh(student)
        return student

    def list_students(
        self,
        page: int = 1,
        limit: int = 10,
        search: Optional[str] = None,
        school: Optional[str] = None,
        class_grade: Optional[str] = None,
    ) -> Tuple[List[StudentView], int]:
        """Page through students, newest first, with masked numbers."""
        filters = []
        if search:
            pattern = f"%{search.lower()}%"
            filters.append(
                or_(func.lower(Student.full_name).like(pattern), func.lower(Student.school_name).like(pattern))
            )
        if school:
            filters.append(func.lower(Student.school_name).like(f"%{school.lower()}%"))
        if class_grade:
            filters.append(func.lower(Student.class_grade).like(f"%{class_grade.lower()}%"))

        stmt = select(Student).order_by(Student.created_at.desc(), Student.id.desc())
        count_stmt = select(func.count(Student.id))
        if filters:
            stmt = stmt.where(*filters)
            count_stmt = count_stmt.where(*filters)
        students = self.session.exec(stmt.offset((page - 1) * limit).limit(limit)).all()
        total = self.session.exec(count_stmt).one()

        counts = dict(
            self.session.exec(
                select(TestAttempt.student_id, func.count(TestAttempt.id)).group_by(TestAttempt.student_id)
            ).all()
        )
        return [self.to_view(s, counts.get(s.id, 0)) for s in students], total

    def export_csv(self) -> str:
        """All students as CSV with decrypted numbers."""
        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL)
        writer.writerow(EXPORT_HEADER)
        for student in self.session.exec(select(Student).order_by(Student.id)).all():
            whatsapp = ""
            if student.whatsapp_number:
                try:
                    whatsapp = self.cipher.decrypt(student.whatsapp_number)
                except SecretDecryptError:
                    logger.warning("Exporting student %s with undecryptable number", student.id)
                    whatsapp = "Encrypted"
            writer.writerow(
                [
                    student.full_name,
                    student.school_name or "",
                    student.age if student.age is not None else "",
                    student.class_grade or "",
                    whatsapp,
                    str(student.consent_whatsapp).lower(),
                    str(student.profile_completed).lower(),
                    student.created_at.isoformat(),
                ]
            )
        return buffer.getvalue()

    def _import_row(self, row: Mapping) -> Student:
        # Spreadsheet cells may arrive decoded as numbers
        email = str(row.get("email") or "").strip().lower()
        full_name = sanitize_text(row.get("fullName"))
        password = str(row.get("password") or "")
        if not email or not full_name or not password:
            raise PayloadValidationError("Missing required fields (email, fullName, password)")
        if "@" not in email:
            raise PayloadValidationError(f"Invalid email {email}")
        if self.session.exec(select(Student.id).where(Student.email == email)).first() is not None:
            raise PayloadValidationError(f"User with email {email} already exists")

        age = row.get("age")
        number = row.get("whatsappNumber")
        return Student(
            full_name=full_name,
            email=email,
            password_hash=hash_password(password),
            school_name=sanitize_text(row.get("schoolName")) or None,
            age=int(age) if age not in (None, "") else None,
            class_grade=sanitize_text(row.get("classGrade")) or None,
            whatsapp_number=self.cipher.encrypt(_check_phone(str(number))) if number else None,
            consent_whatsapp=_truthy(row.get("consentWhatsapp", "")),
            profile_completed=True,
        )

    def import_students(self, rows: Iterable[Mapping]) -> ImportSummary:
        """Create one student per row; bad rows are reported, not fatal."""
        imported = 0
        error_details = []
        for index, row in enumerate(rows, start=1):
            try:
                student = self._import_row(row)
            except PayloadValidationError as e:
                error_details.append(f"Row {index}: {e.message}")
                logger.warning("Student import row %d rejected: %s", index, e.message)
                continue
            except ValueError:
                error_details.append(f"Row {index}: Age must be a number")
                continue
            self.session.add(student)
            # Flush per row so duplicate e-mails inside the same file are caught
            self.session.flush()
            imported += 1
        self.session.commit()
        return ImportSummary(imported=imported, errors=len(error_details), error_details=error_details)
