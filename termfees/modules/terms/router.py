from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from termfees.core.database import get_db
from termfees.modules.terms.schemas import (
    AcademicYearCreate,
    FeeTemplateResponse,
    FeeTemplateSave,
    FeeTemplateStatusUpdate,
    TermCreate,
    TermResponse,
    TermUpdate,
)
from termfees.modules.terms.service import TermService
from termfees.shared.schemas import SuccessResponse

router = APIRouter(prefix="/terms", tags=["Terms & Fee Templates"])
templates_router = APIRouter(prefix="/fee-templates", tags=["Terms & Fee Templates"])


# --- Term Endpoints ---

@router.get("", response_model=SuccessResponse[list[TermResponse]])
async def list_terms(
    academic_year: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """List terms, newest first."""
    terms = await TermService(db).list_terms(academic_year=academic_year)
    return SuccessResponse(
        data=[TermResponse.model_validate(t) for t in terms],
        message="Terms retrieved",
    )


@router.get("/current", response_model=SuccessResponse[TermResponse | None])
async def get_current_term(db: AsyncSession = Depends(get_db)):
    term = await TermService(db).get_current_term()
    if not term:
        return SuccessResponse(data=None, message="No current term")
    return SuccessResponse(data=TermResponse.model_validate(term), message="Current term retrieved")


@router.post("", response_model=SuccessResponse[TermResponse], status_code=201)
async def create_term(data: TermCreate, db: AsyncSession = Depends(get_db)):
    term = await TermService(db).create_term(data)
    return SuccessResponse(data=TermResponse.model_validate(term), message="Term created")


@router.post("/refresh-status", response_model=SuccessResponse[list[TermResponse]])
async def refresh_term_statuses(
    today: date | None = Query(None, description="Defaults to the server date"),
    db: AsyncSession = Depends(get_db),
):
    """Move terms between UPCOMING, ACTIVE and COMPLETED by date."""
    changed = await TermService(db).refresh_term_statuses(today)
    return SuccessResponse(
        data=[TermResponse.model_validate(t) for t in changed],
        message=f"{len(changed)} term(s) updated",
    )


@router.get("/years", response_model=SuccessResponse[list[str]])
async def list_academic_years(db: AsyncSession = Depends(get_db)):
    """Academic years that have terms, latest first."""
    years = await TermService(db).list_academic_years()
    return SuccessResponse(data=years, message="Academic years retrieved")


@router.post("/academic-years", response_model=SuccessResponse[list[TermResponse]], status_code=201)
async def initialize_academic_year(data: AcademicYearCreate, db: AsyncSession = Depends(get_db)):
    """Create every term of a new academic year; the first one becomes current by default."""
    terms = await TermService(db).initialize_academic_year(data)
    return SuccessResponse(
        data=[TermResponse.model_validate(t) for t in terms],
        message=f"Academic year {data.academic_year} initialized",
    )


@router.get("/{term_id}", response_model=SuccessResponse[TermResponse])
async def get_term(term_id: int, db: AsyncSession = Depends(get_db)):
    term = await TermService(db).get_term(term_id)
    return SuccessResponse(data=TermResponse.model_validate(term), message="Term retrieved")


@router.patch("/{term_id}", response_model=SuccessResponse[TermResponse])
async def update_term(term_id: int, data: TermUpdate, db: AsyncSession = Depends(get_db)):
    term = await TermService(db).update_term(term_id, data)
    return SuccessResponse(data=TermResponse.model_validate(term), message="Term updated")


@router.delete("/{term_id}", response_model=SuccessResponse[None])
async def delete_term(term_id: int, db: AsyncSession = Depends(get_db)):
    await TermService(db).delete_term(term_id)
    return SuccessResponse(data=None, message="Term deleted")


@router.post("/{term_id}/promote", response_model=SuccessResponse[TermResponse])
async def promote_term(term_id: int, db: AsyncSession = Depends(get_db)):
    """Make the term current; the previous current term is demoted."""
    term = await TermService(db).promote_term(term_id)
    return SuccessResponse(data=TermResponse.model_validate(term), message="Term is now current")


# --- Fee Template Endpoints ---

@router.get("/{term_id}/fee-templates", response_model=SuccessResponse[list[FeeTemplateResponse]])
async def list_fee_templates(term_id: int, db: AsyncSession = Depends(get_db)):
    templates = await TermService(db).list_fee_templates(term_id)
    return SuccessResponse(
        data=[FeeTemplateResponse.model_validate(t) for t in templates],
        message="Fee templates retrieved",
    )


@router.put("/{term_id}/fee-templates", response_model=SuccessResponse[FeeTemplateResponse])
async def save_fee_template(term_id: int, data: FeeTemplateSave, db: AsyncSession = Depends(get_db)):
    """Create or replace the template for a grade."""
    template = await TermService(db).save_fee_template(term_id, data)
    return SuccessResponse(data=FeeTemplateResponse.model_validate(template), message="Fee template saved")


@router.get("/{term_id}/fee-templates/resolve", response_model=SuccessResponse[FeeTemplateResponse])
async def resolve_fee_template(
    term_id: int,
    grade: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
):
    """Show which template a student with this grade label would be billed from."""
    template = await TermService(db).resolve_fee_template(term_id, grade)
    return SuccessResponse(data=FeeTemplateResponse.model_validate(template), message="Fee template resolved")


@templates_router.delete("/{template_id}", response_model=SuccessResponse[None])
async def delete_fee_template(template_id: int, db: AsyncSession = Depends(get_db)):
    await TermService(db).delete_fee_template(template_id)
    return SuccessResponse(data=None, message="Fee template deleted")


@templates_router.patch("/{template_id}/status", response_model=SuccessResponse[FeeTemplateResponse])
async def set_fee_template_status(
    template_id: int,
    data: FeeTemplateStatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Enable or disable a template without changing its amounts."""
    template = await TermService(db).set_fee_template_status(template_id, data.is_active)
    return SuccessResponse(
        data=FeeTemplateResponse.model_validate(template),
        message="Fee template enabled" if template.is_active else "Fee template disabled",
    )
