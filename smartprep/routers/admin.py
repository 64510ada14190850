"""Admin routes: manage the question bank and student records."""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.responses import Response
from sqlmodel import Session

from smartprep.database import get_session
from smartprep.deps import get_question_bank, get_student_directory
from smartprep.schemas import (
    QuestionAdminOut,
    StudentImportIn,
    TestAdminOut,
    TestCreate,
    TestImportIn,
    TestOut,
    TestUpdate,
    pagination,
)
from smartprep.services.question_bank import QuestionBank
from smartprep.services.question_import import TEMPLATE_ROWS, import_test_from_rows
from smartprep.services.students import StudentDirectory

router = APIRouter()


def _admin_detail(bank: QuestionBank, test) -> TestAdminOut:
    return TestAdminOut(
        **TestOut.model_validate(test).model_dump(),
        questions=[QuestionAdminOut.model_validate(q) for q in bank.list_questions(test.id)],
    )


@router.get("/tests")
def list_tests(bank: QuestionBank = Depends(get_question_bank)):
    """All tests, active or not, with question and attempt counts."""
    tests = [
        {
            **TestOut.model_validate(t).model_dump(),
            "question_count": question_count,
            "attempt_count": attempt_count,
        }
        for t, question_count, attempt_count in bank.list_tests()
    ]
    return {"tests": tests}


@router.post("/tests", status_code=status.HTTP_201_CREATED)
def create_test(payload: TestCreate, bank: QuestionBank = Depends(get_question_bank)):
    test = bank.create_test(
        title=payload.title,
        questions=[q.as_payload() for q in payload.questions],
        description=payload.description,
        time_limit=payload.time_limit,
        is_active=payload.is_active,
    )
    return {"message": "Test created successfully", "test": _admin_detail(bank, test)}


@router.get("/tests/import/template")
def import_template():
    """Example rows in the column layout the importer expects."""
    return {"rows": TEMPLATE_ROWS}


@router.post("/tests/import", status_code=status.HTTP_201_CREATED)
def import_test(payload: TestImportIn, session: Session = Depends(get_session)):
    test = import_test_from_rows(
        session,
        payload.title,
        payload.rows,
        description=payload.description,
        time_limit=payload.time_limit,
        is_active=payload.is_active,
    )
    bank = QuestionBank(session)
    return {"message": "Test imported successfully", "test": _admin_detail(bank, test)}


@router.get("/tests/{test_id}", response_model=TestAdminOut)
def get_test(test_id: int, bank: QuestionBank = Depends(get_question_bank)):
    return _admin_detail(bank, bank.get_test(test_id))


@router.put("/tests/{test_id}")
def update_test(
    test_id: int,
    payload: TestUpdate,
    bank: QuestionBank = Depends(get_question_bank),
):
    questions = None
    if payload.questions is not None:
        questions = [q.as_payload() for q in payload.questions]
    test = bank.update_test(
        test_id,
        title=payload.title,
        description=payload.description,
        time_limit=payload.time_limit,
        is_active=payload.is_active,
        questions=questions,
    )
    return {"message": "Test updated successfully", "test": _admin_detail(bank, test)}


@router.delete("/tests/{test_id}")
def delete_test(test_id: int, bank: QuestionBank = Depends(get_question_bank)):
    bank.delete_test(test_id)
    return {"message": "Test deleted successfully"}


@router.get("/students")
def list_students(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = Query(None),
    school: Optional[str] = Query(None),
    class_grade: Optional[str] = Query(None),
    directory: StudentDirectory = Depends(get_student_directory),
):
    students, total = directory.list_students(
        page=page, limit=limit, search=search, school=school, class_grade=class_grade
    )
    return {"students": students, "pagination": pagination(page, limit, total)}


@router.get("/students/export")
def export_students(directory: StudentDirectory = Depends(get_student_directory)):
    return Response(
        content=directory.export_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="students.csv"'},
    )


@router.post("/students/import")
def import_students(
    payload: StudentImportIn = Body(...),
    directory: StudentDirectory = Depends(get_student_directory),
):
    summary = directory.import_students(payload.rows)
    return {"message": "Import completed", **summary.model_dump()}
