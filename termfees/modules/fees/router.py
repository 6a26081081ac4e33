"""API endpoints for term billing, fee items and reminders."""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from termfees.core.database import get_db
from termfees.core.notifications import ReminderSender, get_reminder_sender
from termfees.modules.fees.billing import AutoBillingService
from termfees.modules.fees.cache import UnpaidItemCacheProtocol, get_unpaid_item_cache
from termfees.modules.fees.locks import StudentLockRegistry, get_student_locks
from termfees.modules.fees.reports import FeeReportService
from termfees.modules.fees.schemas import (
    BillingResult,
    BulkFeeItemCreate,
    BulkStatusUpdate,
    CollectionSummary,
    FeeItemCreate,
    FeeItemResponse,
    GradeFeeDashboard,
    OverdueFeesReport,
    RegenerateBillRequest,
    RegenerateBillResult,
    ReminderRequest,
    ReminderResult,
    SchoolFeeSummary,
    TermAssignmentResponse,
    TermStatistics,
)
from termfees.modules.fees.service import FeeService
from termfees.modules.fees.statistics import FeeStatisticsService
from termfees.shared.schemas import BulkOperationResult, SuccessResponse

router = APIRouter(prefix="/billing", tags=["Billing"])


def get_billing_service(
    db: AsyncSession = Depends(get_db),
    cache: UnpaidItemCacheProtocol = Depends(get_unpaid_item_cache),
    locks: StudentLockRegistry = Depends(get_student_locks),
) -> AutoBillingService:
    return AutoBillingService(db, cache=cache, locks=locks)


def get_fee_service(
    db: AsyncSession = Depends(get_db),
    cache: UnpaidItemCacheProtocol = Depends(get_unpaid_item_cache),
    locks: StudentLockRegistry = Depends(get_student_locks),
) -> FeeService:
    return FeeService(db, cache=cache, locks=locks)


# --- Billing ---


@router.post("/terms/{term_id}/bill", response_model=SuccessResponse[BillingResult])
async def bill_term(term_id: int, service: AutoBillingService = Depends(get_billing_service)):
    """Bill every active student for the term. Already billed students are skipped."""
    result = await service.bill_term(term_id)
    return SuccessResponse(success=result.success, data=result, message=result.message)


@router.post("/current-term/bill", response_model=SuccessResponse[BillingResult])
async def bill_current_term(service: AutoBillingService = Depends(get_billing_service)):
    result = await service.bill_current_term()
    return SuccessResponse(success=result.success, data=result, message=result.message)


@router.post(
    "/students/{student_id}/terms/{term_id}",
    response_model=SuccessResponse[TermAssignmentResponse],
    status_code=status.HTTP_201_CREATED,
)
async def bill_student(
    student_id: int,
    term_id: int,
    service: AutoBillingService = Depends(get_billing_service),
):
    assignment = await service.bill_student(student_id, term_id)
    return SuccessResponse(
        data=TermAssignmentResponse.model_validate(assignment),
        message="Student billed",
    )


@router.post(
    "/students/{student_id}/terms/{term_id}/regenerate",
    response_model=SuccessResponse[RegenerateBillResult],
)
async def regenerate_bill(
    student_id: int,
    term_id: int,
    data: RegenerateBillRequest,
    service: AutoBillingService = Depends(get_billing_service),
):
    """Rebuild a student's term bill from the current template, keeping what was paid."""
    result = await service.regenerate_bill(student_id, term_id, reason=data.reason)
    return SuccessResponse(data=result, message="Bill regenerated")


# --- Statistics & assignments ---


@router.get("/terms/{term_id}/statistics", response_model=SuccessResponse[TermStatistics])
async def term_statistics(term_id: int, db: AsyncSession = Depends(get_db)):
    stats = await FeeStatisticsService(db).term_statistics(term_id)
    return SuccessResponse(data=stats)


@router.get(
    "/students/{student_id}/assignments",
    response_model=SuccessResponse[list[TermAssignmentResponse]],
)
async def list_student_assignments(
    student_id: int,
    service: FeeService = Depends(get_fee_service),
):
    assignments = await service.list_student_assignments(student_id)
    return SuccessResponse(
        data=[TermAssignmentResponse.model_validate(a) for a in assignments],
    )


# --- Fee items ---


@router.post(
    "/students/{student_id}/terms/{term_id}/items",
    response_model=SuccessResponse[FeeItemResponse],
    status_code=status.HTTP_201_CREATED,
)
async def add_fee_item(
    student_id: int,
    term_id: int,
    data: FeeItemCreate,
    service: FeeService = Depends(get_fee_service),
):
    item = await service.add_fee_item(student_id, term_id, data)
    return SuccessResponse(data=FeeItemResponse.model_validate(item), message="Fee item added")


@router.delete("/items/{item_id}", response_model=SuccessResponse[None])
async def remove_fee_item(item_id: int, service: FeeService = Depends(get_fee_service)):
    await service.remove_fee_item(item_id)
    return SuccessResponse(data=None, message="Fee item removed")


@router.post("/terms/{term_id}/items/bulk", response_model=SuccessResponse[BulkOperationResult])
async def bulk_add_fee_item(
    term_id: int,
    data: BulkFeeItemCreate,
    service: FeeService = Depends(get_fee_service),
):
    result = await service.bulk_add_fee_item(data.student_ids, term_id, data.item)
    return SuccessResponse(data=result, message=f"Added to {result.succeeded} of {result.processed} student(s)")


@router.post("/items/bulk-status", response_model=SuccessResponse[BulkOperationResult])
async def bulk_update_item_status(
    data: BulkStatusUpdate,
    service: FeeService = Depends(get_fee_service),
):
    """Override the status of unpaid items; only PENDING and OVERDUE are accepted."""
    result = await service.bulk_update_item_status(data.student_ids, data.academic_year, data.status)
    return SuccessResponse(data=result, message=f"Updated {result.succeeded} student(s)")


# --- Reminders ---


@router.post("/terms/{term_id}/reminders", response_model=SuccessResponse[ReminderResult])
async def send_reminders(
    term_id: int,
    data: ReminderRequest,
    service: FeeService = Depends(get_fee_service),
    sender: ReminderSender = Depends(get_reminder_sender),
):
    result = await service.send_reminders(term_id, data, sender)
    return SuccessResponse(data=result, message=f"{result.sent} reminder(s) sent")


# --- Reports ---


@router.get("/reports/overdue-fees", response_model=SuccessResponse[OverdueFeesReport])
async def overdue_fees_report(
    as_at_date: date | None = Query(None, description="Defaults to the server date"),
    db: AsyncSession = Depends(get_db),
):
    """Unpaid items past their due date, grouped by student."""
    report = await FeeReportService(db).overdue_report(as_at_date)
    return SuccessResponse(data=report)


@router.get("/reports/collection-summary", response_model=SuccessResponse[CollectionSummary])
async def collection_summary(
    start_date: date = Query(..., description="Start date (inclusive)"),
    end_date: date = Query(..., description="End date (inclusive)"),
    db: AsyncSession = Depends(get_db),
):
    summary = await FeeReportService(db).collection_summary(start_date, end_date)
    return SuccessResponse(data=summary)


@router.get("/reports/school-summary", response_model=SuccessResponse[SchoolFeeSummary])
async def school_fee_summary(db: AsyncSession = Depends(get_db)):
    summary = await FeeReportService(db).school_summary()
    return SuccessResponse(data=summary)


@router.get(
    "/terms/{term_id}/grades/{grade}/dashboard",
    response_model=SuccessResponse[GradeFeeDashboard],
)
async def grade_fee_dashboard(term_id: int, grade: str, db: AsyncSession = Depends(get_db)):
    dashboard = await FeeReportService(db).grade_dashboard(term_id, grade)
    return SuccessResponse(data=dashboard)
