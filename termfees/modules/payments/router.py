"""API endpoints for Payments module."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from termfees.core.database import get_db
from termfees.modules.fees.cache import UnpaidItemCacheProtocol, get_unpaid_item_cache
from termfees.modules.fees.locks import StudentLockRegistry, get_student_locks
from termfees.modules.payments.schemas import AllocationResult, FeePaymentResponse, PaymentCreate
from termfees.modules.payments.service import PaymentService
from termfees.shared.schemas import SuccessResponse

router = APIRouter(prefix="/payments", tags=["Payments"])


def get_payment_service(
    db: AsyncSession = Depends(get_db),
    cache: UnpaidItemCacheProtocol = Depends(get_unpaid_item_cache),
    locks: StudentLockRegistry = Depends(get_student_locks),
) -> PaymentService:
    return PaymentService(db, cache=cache, locks=locks)


@router.post(
    "",
    response_model=SuccessResponse[AllocationResult],
    status_code=status.HTTP_201_CREATED,
)
async def create_payment(
    data: PaymentCreate,
    service: PaymentService = Depends(get_payment_service),
):
    """Receive a payment and allocate it across the student's outstanding fees."""
    result = await service.apply_payment(
        data.student_id,
        data.amount,
        data.apply_to_future_terms,
        reference=data.reference,
        notes=data.notes,
        payment_date=data.payment_date,
    )
    return SuccessResponse(data=result, message=f"Payment recorded ({result.outcome})")


@router.get(
    "/students/{student_id}",
    response_model=SuccessResponse[list[FeePaymentResponse]],
)
async def list_student_payments(
    student_id: int,
    service: PaymentService = Depends(get_payment_service),
):
    payments = await service.list_student_payments(student_id)
    return SuccessResponse(
        data=[FeePaymentResponse.model_validate(p) for p in payments],
        message="Payments retrieved",
    )
