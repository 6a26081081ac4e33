"""API endpoints for Students module."""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from termfees.core.database import get_db
from termfees.modules.fees.aggregates import RecalculationService
from termfees.modules.fees.cache import UnpaidItemCacheProtocol, get_unpaid_item_cache
from termfees.modules.fees.locks import StudentLockRegistry, get_student_locks, lock_student_row
from termfees.modules.students.models import StudentStatus
from termfees.modules.students.schemas import StudentCreate, StudentResponse, StudentUpdate
from termfees.modules.students.service import StudentService
from termfees.shared.schemas import PaginatedResponse, SuccessResponse

router = APIRouter(prefix="/students", tags=["Students"])


@router.post(
    "",
    response_model=SuccessResponse[StudentResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_student(data: StudentCreate, db: AsyncSession = Depends(get_db)):
    student = await StudentService(db).create_student(data)
    return SuccessResponse(
        data=StudentResponse.model_validate(student),
        message="Student created successfully",
    )


@router.get(
    "",
    response_model=SuccessResponse[PaginatedResponse[StudentResponse]],
)
async def list_students(
    status: StudentStatus | None = Query(None),
    grade: str | None = Query(None),
    search: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """List students with optional filters."""
    students, total = await StudentService(db).list_students(
        status=status, grade=grade, search=search, page=page, limit=limit
    )
    return SuccessResponse(
        data=PaginatedResponse.create(
            items=[StudentResponse.model_validate(s) for s in students],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.get("/{student_id}", response_model=SuccessResponse[StudentResponse])
async def get_student(student_id: int, db: AsyncSession = Depends(get_db)):
    student = await StudentService(db).get_student_by_id(student_id)
    return SuccessResponse(data=StudentResponse.model_validate(student))


@router.patch("/{student_id}", response_model=SuccessResponse[StudentResponse])
async def update_student(student_id: int, data: StudentUpdate, db: AsyncSession = Depends(get_db)):
    student = await StudentService(db).update_student(student_id, data)
    return SuccessResponse(
        data=StudentResponse.model_validate(student),
        message="Student updated successfully",
    )


@router.post("/{student_id}/recalculate", response_model=SuccessResponse[StudentResponse])
async def recalculate_student_fees(
    student_id: int,
    db: AsyncSession = Depends(get_db),
    cache: UnpaidItemCacheProtocol = Depends(get_unpaid_item_cache),
    locks: StudentLockRegistry = Depends(get_student_locks),
):
    """Rebuild term totals, annual totals and the fee snapshot from line items."""
    student = await StudentService(db).get_student_by_id(student_id)
    async with locks.for_student(student_id):
        try:
            await lock_student_row(db, student_id)
            await RecalculationService(db).recalculate(student_id)
            await db.commit()
        finally:
            cache.invalidate(student_id)
    return SuccessResponse(
        data=StudentResponse.model_validate(student),
        message="Fee totals recalculated",
    )
