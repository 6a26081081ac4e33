"""Service for Students module."""

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from termfees.core.audit import AuditService
from termfees.core.documents import DocumentNumberGenerator
from termfees.core.exceptions import NotFoundError
from termfees.modules.students.models import Student, StudentStatus
from termfees.modules.students.schemas import StudentCreate, StudentUpdate


class StudentService:
    """Student directory used by billing and payments."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def create_student(self, data: StudentCreate) -> Student:
        student_number = await DocumentNumberGenerator(self.db).generate("STU")

        student = Student(
            student_number=student_number,
            first_name=data.first_name.strip(),
            last_name=data.last_name.strip(),
            grade=data.grade,
            transport_mode=data.transport_mode.value if data.transport_mode else None,
            guardian_name=data.guardian_name,
            guardian_phone=data.guardian_phone,
            guardian_email=data.guardian_email,
            status=StudentStatus.ACTIVE.value,
            notes=data.notes,
        )
        self.db.add(student)
        await self.db.flush()

        await self.audit.log(
            action="student.create",
            entity_type="Student",
            entity_id=student.id,
            entity_identifier=student_number,
            new_values={"name": student.full_name, "grade": student.grade},
        )

        await self.db.commit()
        await self.db.refresh(student)
        return student

    async def get_student_by_id(self, student_id: int) -> Student:
        student = await self.db.get(Student, student_id)
        if not student:
            raise NotFoundError("Student", student_id)
        return student

    async def list_active_students(self) -> list[Student]:
        """Active students in a stable order (by id) for batch processing."""
        result = await self.db.execute(
            select(Student).where(Student.status == StudentStatus.ACTIVE.value).order_by(Student.id)
        )
        return list(result.scalars().all())

    async def list_students(
        self,
        status: StudentStatus | None = None,
        grade: str | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 100,
    ) -> tuple[list[Student], int]:
        query = select(Student).order_by(Student.last_name, Student.first_name)

        if status is not None:
            query = query.where(Student.status == status.value)
        if grade:
            query = query.where(func.lower(Student.grade) == grade.strip().lower())
        if search:
            search_term = f"%{search}%"
            query = query.where(
                or_(
                    Student.first_name.ilike(search_term),
                    Student.last_name.ilike(search_term),
                    Student.student_number.ilike(search_term),
                )
            )

        total_result = await self.db.execute(select(func.count()).select_from(query.subquery()))
        total = total_result.scalar() or 0

        result = await self.db.execute(query.offset((page - 1) * limit).limit(limit))
        return list(result.scalars().all()), total

    async def update_student(self, student_id: int, data: StudentUpdate) -> Student:
        student = await self.get_student_by_id(student_id)
        changes = data.model_dump(exclude_unset=True)
        old_values = {field: getattr(student, field) for field in changes}

        for field, value in changes.items():
            if hasattr(value, "value"):
                value = value.value
            setattr(student, field, value)
        await self.db.flush()

        await self.audit.log(
            action="student.update",
            entity_type="Student",
            entity_id=student.id,
            entity_identifier=student.student_number,
            old_values={k: str(v) if v is not None else None for k, v in old_values.items()},
            new_values={k: str(getattr(student, k)) if getattr(student, k) is not None else None for k in changes},
        )

        await self.db.commit()
        await self.db.refresh(student)
        return student
