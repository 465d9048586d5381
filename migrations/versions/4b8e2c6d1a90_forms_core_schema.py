"""forms core schema

Revision ID: 4b8e2c6d1a90
Revises:
Create Date: 2026-10-12 10:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "4b8e2c6d1a90"
down_revision = None
branch_labels = None
depends_on = None


USER_ROLE = sa.Enum("root", "administrator", "technician", "validator", name="user_role")
SUBMISSION_STATUS = sa.Enum("draft", "submitted", "validated", "refused", name="submission_status")


def upgrade():
    op.create_table(
        "company",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("max_users", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("max_users >= 1", name="ck_company_max_users"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "abonnement",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("available_forms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("forms_to_create", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("starts_on", sa.Date(), nullable=False),
        sa.Column("ends_on", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("forms_to_create >= 0", name="ck_abonnement_forms_to_create"),
        sa.CheckConstraint("available_forms >= 0", name="ck_abonnement_available_forms"),
        sa.CheckConstraint("ends_on >= starts_on", name="ck_abonnement_window"),
        sa.ForeignKeyConstraint(["company_id"], ["company.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("abonnement", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_abonnement_company_id"), ["company_id"], unique=False)
    op.create_index(
        "ix_abonnement_company_window",
        "abonnement",
        ["company_id", "starts_on", "ends_on"],
        unique=False,
    )

    op.create_table(
        "user_account",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", USER_ROLE, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("company_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["company_id"], ["company.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    with op.batch_alter_table("user_account", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_user_account_company_id"), ["company_id"], unique=False)

    op.create_table(
        "form_template",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("fields", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["company_id"], ["company.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("form_template", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_form_template_company_id"), ["company_id"], unique=False)

    op.create_table(
        "form_assignment",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("form_template_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("assigned_by", sa.Integer(), nullable=False),
        sa.Column("due_date", sa.DateTime(), nullable=True),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["assigned_by"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["form_template_id"], ["form_template.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("form_assignment", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_form_assignment_user_id"), ["user_id"], unique=False)
    op.create_index(
        "ix_form_assignment_template_user",
        "form_assignment",
        ["form_template_id", "user_id"],
        unique=False,
    )

    op.create_table(
        "validator_technician_assignment",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("form_template_id", sa.Integer(), nullable=False),
        sa.Column("validator_id", sa.Integer(), nullable=False),
        sa.Column("technician_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["form_template_id"], ["form_template.id"]),
        sa.ForeignKeyConstraint(["technician_id"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["validator_id"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "form_template_id",
            "validator_id",
            "technician_id",
            name="uq_validator_technician_assignment",
        ),
    )
    with op.batch_alter_table("validator_technician_assignment", schema=None) as batch_op:
        batch_op.create_index(
            batch_op.f("ix_validator_technician_assignment_validator_id"), ["validator_id"], unique=False
        )
        batch_op.create_index(
            batch_op.f("ix_validator_technician_assignment_technician_id"), ["technician_id"], unique=False
        )

    op.create_table(
        "form_submission",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("form_template_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("form_data", sa.JSON(), nullable=False),
        sa.Column("location_data", sa.JSON(), nullable=True),
        sa.Column("status", SUBMISSION_STATUS, nullable=False, server_default="draft"),
        sa.Column("validated_by", sa.Integer(), nullable=True),
        sa.Column("validated_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["form_template_id"], ["form_template.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["validated_by"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("form_submission", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_form_submission_user_id"), ["user_id"], unique=False)
    op.create_index(
        "ix_form_submission_template_status",
        "form_submission",
        ["form_template_id", "status"],
        unique=False,
    )

    op.create_table(
        "discussion",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sender_id", sa.Integer(), nullable=False),
        sa.Column("recipient_id", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("read_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["recipient_id"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["sender_id"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("discussion", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_discussion_sender_id"), ["sender_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_discussion_recipient_id"), ["recipient_id"], unique=False)


def downgrade():
    with op.batch_alter_table("discussion", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_discussion_recipient_id"))
        batch_op.drop_index(batch_op.f("ix_discussion_sender_id"))
    op.drop_table("discussion")

    op.drop_index("ix_form_submission_template_status", table_name="form_submission")
    with op.batch_alter_table("form_submission", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_form_submission_user_id"))
    op.drop_table("form_submission")

    with op.batch_alter_table("validator_technician_assignment", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_validator_technician_assignment_technician_id"))
        batch_op.drop_index(batch_op.f("ix_validator_technician_assignment_validator_id"))
    op.drop_table("validator_technician_assignment")

    op.drop_index("ix_form_assignment_template_user", table_name="form_assignment")
    with op.batch_alter_table("form_assignment", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_form_assignment_user_id"))
    op.drop_table("form_assignment")

    with op.batch_alter_table("form_template", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_form_template_company_id"))
    op.drop_table("form_template")

    with op.batch_alter_table("user_account", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_user_account_company_id"))
    op.drop_table("user_account")

    op.drop_index("ix_abonnement_company_window", table_name="abonnement")
    with op.batch_alter_table("abonnement", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_abonnement_company_id"))
    op.drop_table("abonnement")

    op.drop_table("company")

    bind = op.get_bind()
    SUBMISSION_STATUS.drop(bind, checkfirst=True)
    USER_ROLE.drop(bind, checkfirst=True)
