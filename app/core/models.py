from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from enum import Enum

from flask_login import UserMixin
from sqlalchemy import CheckConstraint, Enum as SAEnum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from werkzeug.security import generate_password_hash

from app.core.extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Role(str, Enum):
    ROOT = "root"
    ADMINISTRATOR = "administrator"
    TECHNICIAN = "technician"
    VALIDATOR = "validator"


COLLABORATOR_ROLES = frozenset({Role.TECHNICIAN, Role.VALIDATOR})


class FieldType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    SELECT = "select"
    TEXTAREA = "textarea"
    CHECKBOX = "checkbox"
    RADIO = "radio"


OPTION_FIELD_TYPES = frozenset({FieldType.SELECT, FieldType.CHECKBOX, FieldType.RADIO})


class SubmissionStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    VALIDATED = "validated"
    REFUSED = "refused"


class Company(db.Model):
    # Tenant: isolation boundary for users, templates and submissions
    __tablename__ = "company"
    __table_args__ = (CheckConstraint("max_users >= 1", name="ck_company_max_users"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False)
    phone: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    address: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    max_users: Mapped[int] = mapped_column(nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    abonnements = relationship("Abonnement", back_populates="company", order_by="Abonnement.starts_on")
    users = relationship("User", back_populates="company")
    form_templates = relationship("FormTemplate", back_populates="company")

    @property
    def company_id(self) -> int:
        return self.id

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "max_users": self.max_users,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
            "abonnements": [abonnement.to_dict() for abonnement in self.abonnements],
        }


class Abonnement(db.Model):
    # Subscription window: creation budget and concurrent active template cap
    __tablename__ = "abonnement"
    __table_args__ = (
        CheckConstraint("forms_to_create >= 0", name="ck_abonnement_forms_to_create"),
        CheckConstraint("available_forms >= 0", name="ck_abonnement_available_forms"),
        CheckConstraint("ends_on >= starts_on", name="ck_abonnement_window"),
        Index("ix_abonnement_company_window", "company_id", "starts_on", "ends_on"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("company.id"), nullable=False, index=True)
    available_forms: Mapped[int] = mapped_column(nullable=False, default=0)
    forms_to_create: Mapped[int] = mapped_column(nullable=False, default=0)
    starts_on: Mapped[date] = mapped_column(nullable=False)
    ends_on: Mapped[date] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    company = relationship("Company", back_populates="abonnements")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "available_forms": self.available_forms,
            "forms_to_create": self.forms_to_create,
            "starts_on": self.starts_on.isoformat(),
            "ends_on": self.ends_on.isoformat(),
        }


class User(UserMixin, db.Model):
    __tablename__ = "user_account"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    email: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(db.String(255), nullable=False)
    role: Mapped[Role] = mapped_column(
        SAEnum(Role, name="user_role", values_callable=_enum_values),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    # Null only for the root superuser.
    company_id: Mapped[int | None] = mapped_column(ForeignKey("company.id"), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    company = relationship("Company", back_populates="users")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "is_active": self.is_active,
            "company_id": self.company_id,
            "created_at": self.created_at.isoformat(),
        }


class FormTemplate(db.Model):
    __tablename__ = "form_template"

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("company.id"), nullable=False, index=True)
    created_by: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    title: Mapped[str] = mapped_column(db.String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    fields: Mapped[list] = mapped_column(db.JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    company = relationship("Company", back_populates="form_templates")
    creator = relationship("User")

    def field_ids(self) -> list[str]:
        return [field["id"] for field in self.fields or []]

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "created_by": self.created_by,
            "title": self.title,
            "description": self.description,
            "fields": list(self.fields or []),
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class FormAssignment(db.Model):
    __tablename__ = "form_assignment"
    __table_args__ = (Index("ix_form_assignment_template_user", "form_template_id", "user_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    form_template_id: Mapped[int] = mapped_column(ForeignKey("form_template.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False, index=True)
    assigned_by: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    due_date: Mapped[datetime | None] = mapped_column(nullable=True)
    is_completed: Mapped[bool] = mapped_column(default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    form_template = relationship("FormTemplate")
    user = relationship("User", foreign_keys=[user_id])
    assigner = relationship("User", foreign_keys=[assigned_by])

    @property
    def company_id(self) -> int:
        return self.form_template.company_id

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "form_template_id": self.form_template_id,
            "user_id": self.user_id,
            "assigned_by": self.assigned_by,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "is_completed": self.is_completed,
            "created_at": self.created_at.isoformat(),
            "form_template": self.form_template.to_dict(),
        }


class ValidatorTechnicianAssignment(db.Model):
    # A validator may approve a technician's work on a template only through this row
    __tablename__ = "validator_technician_assignment"
    __table_args__ = (
        UniqueConstraint(
            "form_template_id",
            "validator_id",
            "technician_id",
            name="uq_validator_technician_assignment",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    form_template_id: Mapped[int] = mapped_column(ForeignKey("form_template.id"), nullable=False)
    validator_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False, index=True)
    technician_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    form_template = relationship("FormTemplate")
    validator = relationship("User", foreign_keys=[validator_id])
    technician = relationship("User", foreign_keys=[technician_id])

    @property
    def company_id(self) -> int:
        return self.form_template.company_id

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "form_template_id": self.form_template_id,
            "validator_id": self.validator_id,
            "technician_id": self.technician_id,
            "created_at": self.created_at.isoformat(),
        }


class FormSubmission(db.Model):
    __tablename__ = "form_submission"
    __table_args__ = (Index("ix_form_submission_template_status", "form_template_id", "status"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    form_template_id: Mapped[int] = mapped_column(ForeignKey("form_template.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False, index=True)
    form_data: Mapped[dict] = mapped_column(db.JSON, nullable=False, default=dict)
    location_data: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    status: Mapped[SubmissionStatus] = mapped_column(
        SAEnum(SubmissionStatus, name="submission_status", values_callable=_enum_values),
        nullable=False,
        default=SubmissionStatus.DRAFT,
    )
    validated_by: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    validated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    form_template = relationship("FormTemplate")
    user = relationship("User", foreign_keys=[user_id])
    validator = relationship("User", foreign_keys=[validated_by])

    @property
    def company_id(self) -> int:
        return self.form_template.company_id

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "form_template_id": self.form_template_id,
            "form_template_title": self.form_template.title if self.form_template else None,
            "user_id": self.user_id,
            "form_data": dict(self.form_data or {}),
            "location_data": self.location_data,
            "status": self.status.value,
            "validated_by": self.validated_by,
            "validated_at": self.validated_at.isoformat() if self.validated_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class Discussion(db.Model):
    __tablename__ = "discussion"

    id: Mapped[int] = mapped_column(primary_key=True)
    sender_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False, index=True)
    recipient_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False, index=True)
    content: Mapped[str] = mapped_column(db.Text, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    sender = relationship("User", foreign_keys=[sender_id])
    recipient = relationship("User", foreign_keys=[recipient_id])

    @property
    def company_id(self) -> int | None:
        return self.sender.company_id

    def involves(self, user_id: int) -> bool:
        return user_id in (self.sender_id, self.recipient_id)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "sender_id": self.sender_id,
            "recipient_id": self.recipient_id,
            "content": self.content,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat(),
            "sender": {"id": self.sender.id, "name": self.sender.name},
            "recipient": {"id": self.recipient.id, "name": self.recipient.name},
        }


def seed_root_user(session, email: str, password: str) -> User:
    root = User(
        name="Root User",
        email=email.strip().lower(),
        password_hash=generate_password_hash(password),
        role=Role.ROOT,
        company_id=None,
    )
    session.add(root)
    session.commit()
    return root


def seed_demo_data(session) -> None:
    today = date.today()
    seed_root_user(session, "root@example.com", "password")

    company = Company(name="Acme Inspections", email="contact@acme.local", max_users=10)
    session.add(company)
    session.flush()
    session.add(
        Abonnement(
            company_id=company.id,
            available_forms=5,
            forms_to_create=10,
            starts_on=today - timedelta(days=30),
            ends_on=today + timedelta(days=335),
        )
    )

    admin = User(
        name="Admin Acme",
        email="admin@acme.local",
        password_hash=generate_password_hash("admin123"),
        role=Role.ADMINISTRATOR,
        company_id=company.id,
    )
    technician = User(
        name="Bob Technician",
        email="bob@acme.local",
        password_hash=generate_password_hash("bob12345"),
        role=Role.TECHNICIAN,
        company_id=company.id,
    )
    validator = User(
        name="Alice Validator",
        email="alice@acme.local",
        password_hash=generate_password_hash("alice123"),
        role=Role.VALIDATOR,
        company_id=company.id,
    )
    session.add_all([admin, technician, validator])
    session.flush()

    template = FormTemplate(
        company_id=company.id,
        created_by=admin.id,
        title="Site inspection",
        description="Weekly site safety inspection",
        fields=[
            {"id": "site", "label": "Site", "type": "text", "required": True},
            {"id": "visited_on", "label": "Visit date", "type": "date", "required": True},
            {
                "id": "risk",
                "label": "Risk level",
                "type": "select",
                "required": True,
                "options": ["low", "medium", "high"],
            },
            {"id": "notes", "label": "Notes", "type": "textarea", "required": False},
        ],
    )
    session.add(template)
    session.flush()

    session.add_all(
        [
            FormAssignment(form_template_id=template.id, user_id=technician.id, assigned_by=admin.id),
            FormAssignment(form_template_id=template.id, user_id=validator.id, assigned_by=admin.id),
            ValidatorTechnicianAssignment(
                form_template_id=template.id,
                validator_id=validator.id,
                technician_id=technician.id,
            ),
        ]
    )
    # The demo template was created outside the quota path; charge it here.
    session.query(Abonnement).filter_by(company_id=company.id).update(
        {Abonnement.forms_to_create: Abonnement.forms_to_create - 1}
    )
    session.commit()
