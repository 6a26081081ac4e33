from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from termfees.modules.terms.models import GradeFeeTemplate
from termfees.shared.utils.grades import extract_grade_number, normalize_grade_key


class GradeFeeTemplateResolver:
    """
    Finds the fee template for a (term, grade label) pair.

    Lookup order: exact label (case-insensitive), canonical grade key, then a
    scan of the term's templates comparing numeric grade tokens. The scan
    only matters for templates saved before their key was normalized.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve(self, term_id: int, grade_label: str | None) -> GradeFeeTemplate | None:
        if not grade_label or not grade_label.strip():
            return None

        base = select(GradeFeeTemplate).where(
            GradeFeeTemplate.term_id == term_id,
            GradeFeeTemplate.is_active.is_(True),
        )

        result = await self.db.execute(
            base.where(func.lower(GradeFeeTemplate.grade) == grade_label.strip().lower())
            .order_by(GradeFeeTemplate.id)
            .limit(1)
        )
        template = result.scalar_one_or_none()
        if template:
            return template

        result = await self.db.execute(
            base.where(GradeFeeTemplate.grade_key == normalize_grade_key(grade_label)).limit(1)
        )
        template = result.scalar_one_or_none()
        if template:
            return template

        number = extract_grade_number(grade_label)
        if number is None:
            return None

        result = await self.db.execute(base.order_by(GradeFeeTemplate.id))
        for candidate in result.scalars().all():
            if extract_grade_number(candidate.grade) == number:
                return candidate
        return None
