from collections.abc import AsyncGenerator
from datetime import date
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from termfees.core.database import Base, get_db
from termfees.main import app
from termfees.modules.fees.cache import UnpaidItemCache, get_unpaid_item_cache
from termfees.modules.fees.locks import StudentLockRegistry
from termfees.modules.students.models import Student, TransportMode
from termfees.modules.students.schemas import StudentCreate
from termfees.modules.students.service import StudentService
from termfees.modules.terms.models import AcademicTerm, GradeFeeTemplate
from termfees.modules.terms.schemas import FeeTemplateSave, TermCreate
from termfees.modules.terms.service import TermService


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite so concurrent sessions get their own connections."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Get test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def cache() -> UnpaidItemCache:
    return UnpaidItemCache()


@pytest.fixture
def locks() -> StudentLockRegistry:
    return StudentLockRegistry()


@pytest.fixture(autouse=True)
def clear_shared_cache():
    """The process-wide cache used by the API must not leak between tests."""
    get_unpaid_item_cache().clear()
    yield
    get_unpaid_item_cache().clear()


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Get test HTTP client with overridden database dependency."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


# --- Factories ---


@pytest.fixture
def make_student(db_session: AsyncSession):
    """Create and commit an active student."""

    async def _make(
        first_name: str = "Amina",
        last_name: str = "Otieno",
        grade: str | None = "5",
        transport_mode: TransportMode | None = TransportMode.SCHOOL_BUS,
        **kwargs,
    ) -> Student:
        return await StudentService(db_session).create_student(
            StudentCreate(
                first_name=first_name,
                last_name=last_name,
                grade=grade,
                transport_mode=transport_mode,
                **kwargs,
            )
        )

    return _make


@pytest.fixture
def make_term(db_session: AsyncSession):
    """Create and commit a term; optionally promote it to current."""

    async def _make(
        name: str = "Term 1",
        academic_year: str = "2024",
        start_date: date = date(2024, 1, 1),
        end_date: date = date(2024, 3, 31),
        fee_due_date: date | None = None,
        current: bool = False,
        today: date | None = None,
    ) -> AcademicTerm:
        service = TermService(db_session)
        term = await service.create_term(
            TermCreate(
                name=name,
                academic_year=academic_year,
                start_date=start_date,
                end_date=end_date,
                fee_due_date=fee_due_date,
            ),
            today=today or start_date,
        )
        if current:
            await service.promote_term(term.id)
        await db_session.commit()
        return term

    return _make


@pytest.fixture
def make_template(db_session: AsyncSession):
    """Save and commit a grade fee template; amounts are plain numbers."""

    async def _make(
        term_id: int, grade: str = "5", is_active: bool = True, **components
    ) -> GradeFeeTemplate:
        data = FeeTemplateSave(
            grade=grade,
            is_active=is_active,
            **{name: Decimal(str(value)) for name, value in components.items()},
        )
        template = await TermService(db_session).save_fee_template(term_id, data)
        await db_session.commit()
        return template

    return _make
