"""Daily fee maintenance: term statuses, auto-billing, overdue items."""

import logging
from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from termfees.modules.fees.billing import AutoBillingService
from termfees.modules.fees.schemas import BillingResult
from termfees.modules.fees.service import FeeService
from termfees.modules.terms.service import TermService

logger = logging.getLogger(__name__)


async def run_daily_billing(
    session_factory: async_sessionmaker[AsyncSession], today: date | None = None
) -> BillingResult:
    """
    One pass of the scheduled job.

    Term statuses are refreshed first so a term that started today is
    ACTIVE before billing, and overdue items are refreshed last so freshly
    billed items get the right status too.
    """
    today = today or date.today()
    logger.info("Daily billing job started for %s", today)

    async with session_factory() as session:
        changed = await TermService(session).refresh_term_statuses(today)
        await session.commit()
    logger.info("Term status refresh: %d term(s) changed", len(changed))

    async with session_factory() as session:
        result = await AutoBillingService(session, today=today).bill_current_term()

    async with session_factory() as session:
        overdue = await FeeService(session, today=today).refresh_overdue_items(today)

    logger.info(
        "Daily billing job finished: outcome=%s billed=%d skipped=%d errors=%d overdue_changes=%d",
        result.outcome,
        result.billed,
        result.skipped,
        len(result.errors),
        overdue,
    )
    return result
