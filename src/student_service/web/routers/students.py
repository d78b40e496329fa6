"""Student API endpoints."""

from fastapi import APIRouter, Depends

from ...database.models import Student
from ...database.repository import StorageUnavailable, StudentRepository
from ..dependencies import get_student_repository
from ..exceptions import ServiceUnavailableError
from ..schemas import StudentResponse

router = APIRouter()


@router.get("", response_model=list[StudentResponse])
def find_all(
    repository: StudentRepository = Depends(get_student_repository),
) -> list[Student]:
    """Return every student."""
    try:
        return repository.find_all()
    except StorageUnavailable as e:
        raise ServiceUnavailableError(e.message) from e
