import logging
from datetime import date

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from termfees.core.audit import AuditAction, AuditService
from termfees.core.exceptions import DuplicateError, NotFoundError, StateConflictError, ValidationError
from termfees.modules.fees.models import TermAssignment
from termfees.modules.students.models import Student
from termfees.modules.terms.models import AcademicTerm, GradeFeeTemplate, TermStatus
from termfees.modules.terms.resolver import GradeFeeTemplateResolver
from termfees.modules.terms.schemas import AcademicYearCreate, FeeTemplateSave, TermCreate, TermUpdate
from termfees.shared.utils.grades import normalize_grade_key
from termfees.shared.utils.money import round_money

logger = logging.getLogger(__name__)


def term_status_for(start_date: date, end_date: date, today: date) -> TermStatus:
    """Calendar status of a term on ``today``."""
    if today < start_date:
        return TermStatus.UPCOMING
    if today > end_date:
        return TermStatus.COMPLETED
    return TermStatus.ACTIVE


def _validate_dates(start_date: date, end_date: date, fee_due_date: date | None) -> None:
    if end_date <= start_date:
        raise ValidationError("Term end date must be after its start date", "end_date")
    if fee_due_date is not None and fee_due_date < start_date:
        raise ValidationError("Fee due date must not be before the term start date", "fee_due_date")
    if fee_due_date is not None and fee_due_date > end_date:
        raise ValidationError("Fee due date must not be after the term end date", "fee_due_date")


class TermService:
    """Academic calendar and grade fee templates."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.audit = AuditService(session)

    # --- Term Methods ---

    async def get_term_by_id(self, term_id: int) -> AcademicTerm | None:
        return await self.session.get(AcademicTerm, term_id)

    async def get_term(self, term_id: int) -> AcademicTerm:
        term = await self.get_term_by_id(term_id)
        if not term:
            raise NotFoundError("Term", term_id)
        return term

    async def get_current_term(self) -> AcademicTerm | None:
        result = await self.session.execute(
            select(AcademicTerm).where(AcademicTerm.is_current.is_(True))
        )
        return result.scalar_one_or_none()

    async def list_terms(self, academic_year: str | None = None) -> list[AcademicTerm]:
        stmt = select(AcademicTerm).order_by(AcademicTerm.start_date.desc())
        if academic_year:
            stmt = stmt.where(AcademicTerm.academic_year == academic_year)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_upcoming_terms(self, today: date | None = None) -> list[AcademicTerm]:
        """Terms that have not started yet (and are not current), earliest first."""
        today = today or date.today()
        result = await self.session.execute(
            select(AcademicTerm)
            .where(AcademicTerm.start_date > today, AcademicTerm.is_current.is_(False))
            .order_by(AcademicTerm.start_date, AcademicTerm.id)
        )
        return list(result.scalars().all())

    async def list_academic_years(self) -> list[str]:
        """Distinct academic years that have terms, latest first."""
        result = await self.session.execute(
            select(AcademicTerm.academic_year)
            .distinct()
            .order_by(AcademicTerm.academic_year.desc())
        )
        return list(result.scalars().all())

    async def _check_overlap(
        self, academic_year: str, start_date: date, end_date: date, exclude_id: int | None = None
    ) -> None:
        stmt = select(AcademicTerm).where(
            AcademicTerm.academic_year == academic_year,
            AcademicTerm.start_date <= end_date,
            AcademicTerm.end_date >= start_date,
        )
        if exclude_id is not None:
            stmt = stmt.where(AcademicTerm.id != exclude_id)
        result = await self.session.execute(stmt.limit(1))
        clash = result.scalar_one_or_none()
        if clash:
            raise StateConflictError(
                f"Term dates overlap with {clash.display_name}",
                details={"field": "start_date", "term_id": clash.id},
            )

    async def create_term(self, data: TermCreate, today: date | None = None) -> AcademicTerm:
        """Create a term; its status is derived from the calendar."""
        _validate_dates(data.start_date, data.end_date, data.fee_due_date)

        result = await self.session.execute(
            select(AcademicTerm).where(
                AcademicTerm.academic_year == data.academic_year,
                AcademicTerm.name == data.name,
            )
        )
        if result.scalar_one_or_none():
            raise DuplicateError("Term", "academic_year/name", f"{data.academic_year}/{data.name}")

        await self._check_overlap(data.academic_year, data.start_date, data.end_date)

        term = AcademicTerm(
            name=data.name,
            academic_year=data.academic_year,
            start_date=data.start_date,
            end_date=data.end_date,
            fee_due_date=data.fee_due_date,
            is_current=False,
            status=term_status_for(data.start_date, data.end_date, today or date.today()).value,
            notes=data.notes,
        )
        self.session.add(term)
        await self.session.flush()

        await self.audit.log(
            action=AuditAction.CREATE,
            entity_type="AcademicTerm",
            entity_id=term.id,
            entity_identifier=term.display_name,
            new_values={
                "start_date": str(term.start_date),
                "end_date": str(term.end_date),
                "status": term.status,
            },
        )
        return term

    async def update_term(self, term_id: int, data: TermUpdate) -> AcademicTerm:
        """Update names and dates. Status and the current flag are not touched."""
        term = await self.get_term(term_id)

        start_date = data.start_date or term.start_date
        end_date = data.end_date or term.end_date
        fee_due_date = data.fee_due_date if data.fee_due_date is not None else term.fee_due_date
        _validate_dates(start_date, end_date, fee_due_date)
        if start_date != term.start_date or end_date != term.end_date:
            await self._check_overlap(term.academic_year, start_date, end_date, exclude_id=term.id)

        old_values = {
            "name": term.name,
            "start_date": str(term.start_date),
            "end_date": str(term.end_date),
            "fee_due_date": str(term.fee_due_date) if term.fee_due_date else None,
        }

        if data.name is not None:
            term.name = data.name.strip()
        term.start_date = start_date
        term.end_date = end_date
        term.fee_due_date = fee_due_date
        if data.notes is not None:
            term.notes = data.notes
        await self.session.flush()

        await self.audit.log(
            action=AuditAction.UPDATE,
            entity_type="AcademicTerm",
            entity_id=term.id,
            entity_identifier=term.display_name,
            old_values=old_values,
            new_values={
                "name": term.name,
                "start_date": str(term.start_date),
                "end_date": str(term.end_date),
                "fee_due_date": str(term.fee_due_date) if term.fee_due_date else None,
            },
        )
        return term

    async def delete_term(self, term_id: int) -> None:
        """Delete a term that was never billed; its templates go with it."""
        term = await self.get_term(term_id)
        if term.is_current:
            raise StateConflictError("Cannot delete the current term")

        result = await self.session.execute(
            select(func.count()).select_from(TermAssignment).where(TermAssignment.term_id == term_id)
        )
        if result.scalar_one():
            raise StateConflictError("Cannot delete a term that has fee assignments")

        await self.audit.log(
            action=AuditAction.DELETE,
            entity_type="AcademicTerm",
            entity_id=term.id,
            entity_identifier=term.display_name,
        )
        await self.session.delete(term)
        await self.session.flush()

    async def promote_term(self, term_id: int, performed_by: str | None = None) -> AcademicTerm:
        """
        Make a term the current one.

        The previously current term is demoted in the same transaction, so at
        most one term is ever current.
        """
        term = await self.get_term(term_id)
        if term.is_current:
            raise ValidationError("Term is already the current term")
        if term.is_completed:
            raise ValidationError("Cannot promote a completed term")

        previous = await self.get_current_term()
        # Demote first: the partial unique index allows a single current row
        await self.session.execute(
            update(AcademicTerm)
            .where(AcademicTerm.is_current.is_(True))
            .values(is_current=False)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.flush()

        old_status = term.status
        term.is_current = True
        term.status = TermStatus.ACTIVE.value
        await self.session.flush()

        await self.audit.log(
            action=AuditAction.PROMOTE_TERM,
            entity_type="AcademicTerm",
            entity_id=term.id,
            performed_by=performed_by,
            entity_identifier=term.display_name,
            old_values={
                "status": old_status,
                "previous_current_term_id": previous.id if previous else None,
            },
            new_values={"status": term.status, "is_current": True},
        )
        logger.info(
            "Term %s promoted to current (previous: %s)",
            term.display_name,
            previous.display_name if previous else "none",
        )
        return term

    async def refresh_term_statuses(self, today: date | None = None) -> list[AcademicTerm]:
        """Move terms along UPCOMING -> ACTIVE -> COMPLETED by date. Returns changed terms."""
        today = today or date.today()
        result = await self.session.execute(select(AcademicTerm))
        changed: list[AcademicTerm] = []
        for term in result.scalars().all():
            status = term_status_for(term.start_date, term.end_date, today).value
            if term.status != status:
                logger.info("Term %s status %s -> %s", term.display_name, term.status, status)
                term.status = status
                changed.append(term)
        await self.session.flush()
        return changed

    async def initialize_academic_year(
        self,
        data: AcademicYearCreate,
        today: date | None = None,
        performed_by: str | None = None,
    ) -> list[AcademicTerm]:
        """
        Create all terms of a new academic year.

        The year must not have any terms yet and the periods must not overlap
        one another. The first period is promoted to current unless
        ``make_first_current`` is off. Nothing is created when any check fails.
        """
        result = await self.session.execute(
            select(func.count())
            .select_from(AcademicTerm)
            .where(AcademicTerm.academic_year == data.academic_year)
        )
        if result.scalar_one():
            raise DuplicateError("Academic year", "academic_year", data.academic_year)

        names = [period.name for period in data.term_periods]
        if len(set(names)) != len(names):
            raise ValidationError("Term names must be unique within the year", "term_periods")
        for period in data.term_periods:
            _validate_dates(period.start_date, period.end_date, period.fee_due_date)
        ordered = sorted(data.term_periods, key=lambda p: p.start_date)
        for previous, period in zip(ordered, ordered[1:]):
            if period.start_date <= previous.end_date:
                raise ValidationError(
                    f"Term periods {previous.name} and {period.name} overlap", "term_periods"
                )
        first = data.term_periods[0]
        calendar_today = today or date.today()
        if (
            data.make_first_current
            and term_status_for(first.start_date, first.end_date, calendar_today) == TermStatus.COMPLETED
        ):
            raise ValidationError("Cannot make a completed term current", "make_first_current")

        terms = []
        for period in data.term_periods:
            terms.append(
                await self.create_term(
                    TermCreate(
                        name=period.name,
                        academic_year=data.academic_year,
                        start_date=period.start_date,
                        end_date=period.end_date,
                        fee_due_date=period.fee_due_date,
                        notes=period.notes,
                    ),
                    today=calendar_today,
                )
            )
        if data.make_first_current:
            await self.promote_term(terms[0].id, performed_by=performed_by)

        await self.audit.log(
            action=AuditAction.INITIALIZE_ACADEMIC_YEAR,
            entity_type="AcademicTerm",
            entity_id=terms[0].id,
            performed_by=performed_by,
            entity_identifier=data.academic_year,
            new_values={"terms": names, "current": terms[0].id if data.make_first_current else None},
        )
        logger.info("Academic year %s initialized with %d term(s)", data.academic_year, len(terms))
        return terms

    # --- Grade Fee Template Methods ---

    async def save_fee_template(self, term_id: int, data: FeeTemplateSave) -> GradeFeeTemplate:
        """Create the template for a grade, or replace the one with the same grade key."""
        await self.get_term(term_id)
        grade_key = normalize_grade_key(data.grade)

        result = await self.session.execute(
            select(GradeFeeTemplate).where(
                GradeFeeTemplate.term_id == term_id,
                GradeFeeTemplate.grade_key == grade_key,
            )
        )
        template = result.scalar_one_or_none()
        if template is None:
            template = GradeFeeTemplate(term_id=term_id, grade=data.grade, grade_key=grade_key)
            self.session.add(template)

        template.grade = data.grade
        for field, value in data.model_dump(exclude={"grade", "is_active", "notes"}).items():
            setattr(template, field, round_money(value) if value is not None else None)
        template.is_active = data.is_active
        template.notes = data.notes
        template.total_fee = round_money(template.compute_total())

        await self.session.flush()
        return template

    async def list_fee_templates(self, term_id: int) -> list[GradeFeeTemplate]:
        await self.get_term(term_id)
        result = await self.session.execute(
            select(GradeFeeTemplate)
            .where(GradeFeeTemplate.term_id == term_id)
            .order_by(GradeFeeTemplate.grade_key)
        )
        return list(result.scalars().all())

    async def get_fee_template(self, template_id: int) -> GradeFeeTemplate:
        template = await self.session.get(GradeFeeTemplate, template_id)
        if not template:
            raise NotFoundError("Grade fee template", template_id)
        return template

    async def set_fee_template_status(
        self, template_id: int, is_active: bool, performed_by: str | None = None
    ) -> GradeFeeTemplate:
        """Enable or disable a template. Disabled templates are skipped when billing."""
        template = await self.get_fee_template(template_id)
        if template.is_active == is_active:
            return template

        template.is_active = is_active
        await self.session.flush()
        await self.audit.log(
            action=AuditAction.FEE_TEMPLATE_STATUS,
            entity_type="GradeFeeTemplate",
            entity_id=template.id,
            performed_by=performed_by,
            entity_identifier=f"{template.grade} (term {template.term_id})",
            old_values={"is_active": not is_active},
            new_values={"is_active": is_active},
        )
        return template

    async def resolve_fee_template(self, term_id: int, grade: str) -> GradeFeeTemplate:
        await self.get_term(term_id)
        template = await GradeFeeTemplateResolver(self.session).resolve(term_id, grade)
        if not template:
            raise NotFoundError(f"Fee template for grade '{grade}'")
        return template

    async def delete_fee_template(self, template_id: int) -> None:
        """Delete a template unless students of its grade are already billed for the term."""
        template = await self.get_fee_template(template_id)

        result = await self.session.execute(
            select(Student.grade)
            .join(TermAssignment, TermAssignment.student_id == Student.id)
            .where(TermAssignment.term_id == template.term_id)
        )
        in_use = sum(1 for (grade,) in result.all() if normalize_grade_key(grade) == template.grade_key)
        if in_use:
            raise StateConflictError(
                f"Cannot delete template for grade {template.grade}: "
                f"{in_use} student(s) already billed with it",
                details={"assignments": in_use},
            )

        await self.audit.log(
            action=AuditAction.DELETE_FEE_TEMPLATE,
            entity_type="GradeFeeTemplate",
            entity_id=template.id,
            entity_identifier=f"{template.grade} (term {template.term_id})",
            old_values={"total_fee": str(template.total_fee)},
        )
        await self.session.delete(template)
        await self.session.flush()
