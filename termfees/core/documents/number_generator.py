from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from termfees.core.documents.models import DocumentSequence


class DocumentNumberGenerator:
    """
    Issues sequential numbers formatted as PREFIX-YYYY-NNNNNN.

    Used for payment receipts (RCT-2026-000042). The sequence row is read
    with SELECT FOR UPDATE so concurrent payments never share a number.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _locked_sequence(self, prefix: str, year: int) -> DocumentSequence | None:
        result = await self.session.execute(
            select(DocumentSequence)
            .where(DocumentSequence.prefix == prefix, DocumentSequence.year == year)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def generate(self, prefix: str, year: int | None = None) -> str:
        year = year or date.today().year

        sequence = await self._locked_sequence(prefix, year)
        if sequence is None:
            self.session.add(DocumentSequence(prefix=prefix, year=year, last_number=0))
            await self.session.flush()
            sequence = await self._locked_sequence(prefix, year)

        sequence.last_number += 1
        await self.session.flush()

        return f"{prefix}-{year}-{sequence.last_number:06d}"


async def get_document_number(session: AsyncSession, prefix: str, year: int | None = None) -> str:
    """Generate the next number for ``prefix`` without keeping a generator around."""
    return await DocumentNumberGenerator(session).generate(prefix, year)
