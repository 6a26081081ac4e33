"""Term billing and payment allocation tables

Revision ID: 001_term_billing
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_term_billing"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # Document sequences (receipt and student numbers)
    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("prefix", sa.String(20), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("last_number", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id", name="pk_document_sequences"),
        sa.UniqueConstraint("prefix", "year", name="uq_document_sequence_prefix_year"),
    )

    # Audit log
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("performed_by", sa.String(200), nullable=True),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.BigInteger(), nullable=False),
        sa.Column("entity_identifier", sa.String(200), nullable=True),
        sa.Column("old_values", sa.JSON(), nullable=True),
        sa.Column("new_values", sa.JSON(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_audit_logs"),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])

    # Students with the fee snapshot
    op.create_table(
        "students",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("student_number", sa.String(50), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("grade", sa.String(50), nullable=True),
        sa.Column("transport_mode", sa.String(20), nullable=True),
        sa.Column("guardian_name", sa.String(200), nullable=True),
        sa.Column("guardian_phone", sa.String(20), nullable=True),
        sa.Column("guardian_email", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("fee_total", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("fee_paid", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("fee_pending", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("fee_status", sa.String(20), nullable=True),
        sa.Column("fee_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_students"),
    )
    op.create_index("ix_students_student_number", "students", ["student_number"], unique=True)
    op.create_index("ix_students_grade", "students", ["grade"])
    op.create_index("ix_students_status", "students", ["status"])

    # Academic terms
    op.create_table(
        "academic_terms",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("academic_year", sa.String(20), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("fee_due_date", sa.Date(), nullable=True),
        sa.Column("is_current", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(20), nullable=False, server_default="UPCOMING"),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_academic_terms"),
        sa.UniqueConstraint("academic_year", "name", name="uq_academic_term_year_name"),
    )
    op.create_index("ix_academic_terms_academic_year", "academic_terms", ["academic_year"])
    op.create_index("ix_academic_terms_status", "academic_terms", ["status"])
    # At most one current term
    op.create_index(
        "uq_academic_terms_single_current",
        "academic_terms",
        ["is_current"],
        unique=True,
        postgresql_where=sa.text("is_current"),
    )

    # Grade fee templates
    op.create_table(
        "grade_fee_templates",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("term_id", sa.BigInteger(), nullable=False),
        sa.Column("grade", sa.String(50), nullable=False),
        sa.Column("grade_key", sa.String(50), nullable=False),
        sa.Column("tuition_fee", sa.Numeric(15, 2), nullable=True),
        sa.Column("basic_fee", sa.Numeric(15, 2), nullable=True),
        sa.Column("examination_fee", sa.Numeric(15, 2), nullable=True),
        sa.Column("transport_fee", sa.Numeric(15, 2), nullable=True),
        sa.Column("library_fee", sa.Numeric(15, 2), nullable=True),
        sa.Column("sports_fee", sa.Numeric(15, 2), nullable=True),
        sa.Column("activity_fee", sa.Numeric(15, 2), nullable=True),
        sa.Column("hostel_fee", sa.Numeric(15, 2), nullable=True),
        sa.Column("uniform_fee", sa.Numeric(15, 2), nullable=True),
        sa.Column("book_fee", sa.Numeric(15, 2), nullable=True),
        sa.Column("other_fees", sa.Numeric(15, 2), nullable=True),
        sa.Column("total_fee", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_grade_fee_templates"),
        sa.ForeignKeyConstraint(
            ["term_id"],
            ["academic_terms.id"],
            name="fk_grade_fee_templates_term_id_academic_terms",
        ),
        sa.UniqueConstraint("term_id", "grade_key", name="uq_grade_fee_template_term_grade"),
    )
    op.create_index("ix_grade_fee_templates_term_id", "grade_fee_templates", ["term_id"])
    op.create_index("ix_grade_fee_templates_grade_key", "grade_fee_templates", ["grade_key"])

    # Term assignments (one per billed student and term)
    op.create_table(
        "term_assignments",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("student_id", sa.BigInteger(), nullable=False),
        sa.Column("term_id", sa.BigInteger(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("total_term_fee", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("paid_amount", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("pending_amount", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("is_billed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("billing_date", sa.Date(), nullable=True),
        sa.Column("last_payment_date", sa.Date(), nullable=True),
        sa.Column("reminders_sent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_reminder_date", sa.Date(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_term_assignments"),
        sa.ForeignKeyConstraint(
            ["student_id"], ["students.id"], name="fk_term_assignments_student_id_students"
        ),
        sa.ForeignKeyConstraint(
            ["term_id"], ["academic_terms.id"], name="fk_term_assignments_term_id_academic_terms"
        ),
        sa.UniqueConstraint("student_id", "term_id", name="uq_term_assignment_student_term"),
    )
    op.create_index("ix_term_assignments_student_id", "term_assignments", ["student_id"])
    op.create_index("ix_term_assignments_term_id", "term_assignments", ["term_id"])
    op.create_index("ix_term_assignments_status", "term_assignments", ["status"])

    # Fee line items
    op.create_table(
        "fee_line_items",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("term_assignment_id", sa.BigInteger(), nullable=False),
        sa.Column("student_id", sa.BigInteger(), nullable=False),
        sa.Column("item_name", sa.String(200), nullable=False),
        sa.Column("item_type", sa.String(20), nullable=False),
        sa.Column("original_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("paid_amount", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("pending_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("is_mandatory", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_auto_generated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sequence_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_fee_line_items"),
        sa.ForeignKeyConstraint(
            ["term_assignment_id"],
            ["term_assignments.id"],
            name="fk_fee_line_items_term_assignment_id_term_assignments",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["student_id"], ["students.id"], name="fk_fee_line_items_student_id_students"
        ),
    )
    op.create_index("ix_fee_line_items_term_assignment_id", "fee_line_items", ["term_assignment_id"])
    op.create_index("ix_fee_line_items_student_id", "fee_line_items", ["student_id"])
    op.create_index("ix_fee_line_items_due_date", "fee_line_items", ["due_date"])
    op.create_index("ix_fee_line_items_status", "fee_line_items", ["status"])

    # Annual roll-ups
    op.create_table(
        "annual_fee_assignments",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("student_id", sa.BigInteger(), nullable=False),
        sa.Column("academic_year", sa.String(20), nullable=False),
        sa.Column("total_amount", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("paid_amount", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("pending_amount", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("due_date", sa.Date(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_annual_fee_assignments"),
        sa.ForeignKeyConstraint(
            ["student_id"], ["students.id"], name="fk_annual_fee_assignments_student_id_students"
        ),
        sa.UniqueConstraint("student_id", "academic_year", name="uq_annual_fee_student_year"),
    )
    op.create_index("ix_annual_fee_assignments_student_id", "annual_fee_assignments", ["student_id"])

    # Payments and their per-item applications
    op.create_table(
        "fee_payments",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("receipt_number", sa.String(50), nullable=False),
        sa.Column("student_id", sa.BigInteger(), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("applied_amount", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("forwarded_amount", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("credit_amount", sa.Numeric(15, 2), nullable=False, server_default="0.00"),
        sa.Column("apply_to_future_terms", sa.Boolean(), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("reference", sa.String(100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_fee_payments"),
        sa.ForeignKeyConstraint(
            ["student_id"], ["students.id"], name="fk_fee_payments_student_id_students"
        ),
    )
    op.create_index("ix_fee_payments_receipt_number", "fee_payments", ["receipt_number"], unique=True)
    op.create_index("ix_fee_payments_student_id", "fee_payments", ["student_id"])
    op.create_index("ix_fee_payments_created_at", "fee_payments", ["created_at"])

    op.create_table(
        "payment_applications",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("payment_id", sa.BigInteger(), nullable=False),
        sa.Column("fee_item_id", sa.BigInteger(), nullable=True),
        sa.Column("term_id", sa.BigInteger(), nullable=False),
        sa.Column("item_name", sa.String(200), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_payment_applications"),
        sa.ForeignKeyConstraint(
            ["payment_id"],
            ["fee_payments.id"],
            name="fk_payment_applications_payment_id_fee_payments",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["fee_item_id"],
            ["fee_line_items.id"],
            name="fk_payment_applications_fee_item_id_fee_line_items",
            ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["term_id"], ["academic_terms.id"], name="fk_payment_applications_term_id_academic_terms"
        ),
    )
    op.create_index("ix_payment_applications_payment_id", "payment_applications", ["payment_id"])
    op.create_index("ix_payment_applications_fee_item_id", "payment_applications", ["fee_item_id"])


def downgrade() -> None:
    op.drop_table("payment_applications")
    op.drop_table("fee_payments")
    op.drop_table("annual_fee_assignments")
    op.drop_table("fee_line_items")
    op.drop_table("term_assignments")
    op.drop_table("grade_fee_templates")
    op.drop_index("uq_academic_terms_single_current", table_name="academic_terms")
    op.drop_table("academic_terms")
    op.drop_table("students")
    op.drop_table("audit_logs")
    op.drop_table("document_sequences")
