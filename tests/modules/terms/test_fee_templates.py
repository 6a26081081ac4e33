from datetime import date
from decimal import Decimal

import pytest
from httpx import AsyncClient
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from termfees.core.audit import AuditAction, AuditLog
from termfees.core.exceptions import NotFoundError, StateConflictError
from termfees.modules.fees.billing import AutoBillingService
from termfees.modules.terms.resolver import GradeFeeTemplateResolver
from termfees.modules.terms.schemas import FeeTemplateSave
from termfees.modules.terms.service import TermService


class TestSaveFeeTemplate:
    async def test_total_and_grade_key(self, db_session: AsyncSession, make_term):
        term = await make_term()

        template = await TermService(db_session).save_fee_template(
            term.id,
            FeeTemplateSave(
                grade="Grade 5",
                tuition_fee=Decimal("1000"),
                transport_fee=Decimal("300.50"),
                library_fee=Decimal("0"),
            ),
        )

        assert template.grade == "Grade 5"
        assert template.grade_key == "5"
        assert template.total_fee == Decimal("1300.50")
        assert template.library_fee == Decimal("0.00")
        assert template.basic_fee is None

    async def test_save_replaces_same_grade(self, db_session: AsyncSession, make_term, make_template):
        term = await make_term()
        first = await make_template(term.id, "5", tuition_fee=1000)

        second = await TermService(db_session).save_fee_template(
            term.id, FeeTemplateSave(grade="5-A", tuition_fee=Decimal("1200"))
        )

        assert second.id == first.id
        assert second.grade == "5-A"
        assert second.total_fee == Decimal("1200.00")
        assert len(await TermService(db_session).list_fee_templates(term.id)) == 1

    def test_negative_component_rejected(self):
        with pytest.raises(PydanticValidationError):
            FeeTemplateSave(grade="5", tuition_fee=Decimal("-1"))

    async def test_save_for_missing_term(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await TermService(db_session).save_fee_template(
                999, FeeTemplateSave(grade="5", tuition_fee=Decimal("100"))
            )


class TestGradeFeeTemplateResolver:
    """A student's grade label resolves to the template of the same grade."""

    @pytest.mark.parametrize("label", ["5", "5-A", "5 - Section B", "Grade 5", "grade 05"])
    async def test_resolves_label_variants(
        self, db_session: AsyncSession, make_term, make_template, label
    ):
        term = await make_term()
        template = await make_template(term.id, "5", tuition_fee=1000)

        resolved = await GradeFeeTemplateResolver(db_session).resolve(term.id, label)

        assert resolved is not None
        assert resolved.id == template.id

    async def test_exact_label_without_number(
        self, db_session: AsyncSession, make_term, make_template
    ):
        term = await make_term()
        pp1 = await make_template(term.id, "PP1", tuition_fee=800)
        await make_template(term.id, "1", tuition_fee=900)

        resolved = await GradeFeeTemplateResolver(db_session).resolve(term.id, "pp1")

        assert resolved.id == pp1.id

    async def test_inactive_template_not_resolved(
        self, db_session: AsyncSession, make_term, make_template
    ):
        term = await make_term()
        await make_template(term.id, "6", is_active=False, tuition_fee=1000)

        assert await GradeFeeTemplateResolver(db_session).resolve(term.id, "6") is None
        with pytest.raises(NotFoundError):
            await TermService(db_session).resolve_fee_template(term.id, "6")

    async def test_other_term_not_resolved(self, db_session: AsyncSession, make_term, make_template):
        term1 = await make_term()
        term2 = await make_term(name="Term 2", start_date=date(2024, 5, 1), end_date=date(2024, 7, 31))
        await make_template(term1.id, "5", tuition_fee=1000)

        assert await GradeFeeTemplateResolver(db_session).resolve(term2.id, "5") is None

    async def test_blank_label(self, db_session: AsyncSession, make_term):
        term = await make_term()
        assert await GradeFeeTemplateResolver(db_session).resolve(term.id, "  ") is None
        assert await GradeFeeTemplateResolver(db_session).resolve(term.id, None) is None


class TestDeleteFeeTemplate:
    async def test_delete_unused(self, db_session: AsyncSession, make_term, make_template):
        term = await make_term()
        template = await make_template(term.id, "5", tuition_fee=1000)
        template_id = template.id

        await TermService(db_session).delete_fee_template(template_id)
        await db_session.commit()

        with pytest.raises(NotFoundError):
            await TermService(db_session).get_fee_template(template_id)
        result = await db_session.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.DELETE_FEE_TEMPLATE.value)
        )
        assert result.scalar_one().entity_id == template_id

    async def test_delete_in_use_rejected(
        self, db_session: AsyncSession, make_term, make_template, make_student
    ):
        term = await make_term(current=True)
        template = await make_template(term.id, "5", tuition_fee=1000)
        student = await make_student(grade="5-B")
        await AutoBillingService(db_session, today=date(2024, 1, 2)).bill_student(student.id, term.id)

        with pytest.raises(StateConflictError):
            await TermService(db_session).delete_fee_template(template.id)


class TestFeeTemplateStatus:
    async def test_disable_and_enable(self, db_session: AsyncSession, make_term, make_template):
        term = await make_term()
        template = await make_template(term.id, "5", tuition_fee=1000)
        service = TermService(db_session)
        resolver = GradeFeeTemplateResolver(db_session)

        disabled = await service.set_fee_template_status(template.id, False, performed_by="bursar")
        assert disabled.is_active is False
        assert disabled.total_fee == Decimal("1000.00")
        assert await resolver.resolve(term.id, "5") is None

        # Unchanged status writes no audit entry
        await service.set_fee_template_status(template.id, False)
        await service.set_fee_template_status(template.id, True)
        assert (await resolver.resolve(term.id, "5-A")).id == template.id

        result = await db_session.execute(
            select(AuditLog)
            .where(AuditLog.action == AuditAction.FEE_TEMPLATE_STATUS.value)
            .order_by(AuditLog.id)
        )
        logs = result.scalars().all()
        assert [log.performed_by for log in logs] == ["bursar", None]

    async def test_missing_template(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await TermService(db_session).set_fee_template_status(999, False)


class TestFeeTemplateEndpoints:
    async def test_save_list_resolve(self, client: AsyncClient, make_term):
        term = await make_term()

        response = await client.put(
            f"/api/v1/terms/{term.id}/fee-templates",
            json={"grade": "Grade 7", "tuition_fee": "1500", "activity_fee": "250.25"},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["grade_key"] == "7"
        assert Decimal(data["total_fee"]) == Decimal("1750.25")

        response = await client.get(f"/api/v1/terms/{term.id}/fee-templates")
        assert len(response.json()["data"]) == 1

        response = await client.get(
            f"/api/v1/terms/{term.id}/fee-templates/resolve", params={"grade": "7-C"}
        )
        assert response.status_code == 200
        assert response.json()["data"]["id"] == data["id"]

    async def test_negative_component_is_422(self, client: AsyncClient, make_term):
        term = await make_term()

        response = await client.put(
            f"/api/v1/terms/{term.id}/fee-templates",
            json={"grade": "5", "tuition_fee": "-10"},
        )

        assert response.status_code == 422

    async def test_resolve_unknown_grade_is_404(self, client: AsyncClient, make_term):
        term = await make_term()

        response = await client.get(
            f"/api/v1/terms/{term.id}/fee-templates/resolve", params={"grade": "9"}
        )

        assert response.status_code == 404

    async def test_delete(self, client: AsyncClient, make_term, make_template):
        term = await make_term()
        template = await make_template(term.id, "5", tuition_fee=1000)

        response = await client.delete(f"/api/v1/fee-templates/{template.id}")

        assert response.status_code == 200
        assert response.json()["success"] is True

    async def test_toggle_status(self, client: AsyncClient, make_term, make_template):
        term = await make_term()
        template = await make_template(term.id, "5", tuition_fee=1000)

        response = await client.patch(
            f"/api/v1/fee-templates/{template.id}/status", json={"is_active": False}
        )

        assert response.status_code == 200
        assert response.json()["data"]["is_active"] is False
        response = await client.get(
            f"/api/v1/terms/{term.id}/fee-templates/resolve", params={"grade": "5"}
        )
        assert response.status_code == 404
