"""Student profile and progress routes."""

from fastapi import APIRouter, Body, Depends, Query

from smartprep.deps import get_attempt_service, get_student_directory
from smartprep.schemas import ProfileComplete, ProfileUpdate
from smartprep.services.attempts import AttemptService
from smartprep.services.students import StudentDirectory

router = APIRouter()


@router.post("/profile/complete")
def complete_profile(
    student_id: int = Query(...),
    payload: ProfileComplete = Body(...),
    directory: StudentDirectory = Depends(get_student_directory),
):
    student = directory.complete_profile(student_id, **payload.model_dump())
    return {"student": directory.to_view(student)}


@router.get("/profile")
def get_profile(
    student_id: int = Query(...),
    directory: StudentDirectory = Depends(get_student_directory),
):
    return directory.get_profile(student_id)


@router.put("/profile")
def update_profile(
    student_id: int = Query(...),
    payload: ProfileUpdate = Body(...),
    directory: StudentDirectory = Depends(get_student_directory),
):
    student = directory.update_profile(student_id, **payload.model_dump(exclude_unset=True))
    return {"student": directory.to_view(student)}


@router.get("/progress")
def get_progress(
    student_id: int = Query(...),
    service: AttemptService = Depends(get_attempt_service),
):
    return service.progress(student_id)
