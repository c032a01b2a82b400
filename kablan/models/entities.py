"""Ledger records as stored in the JSON gateway collections.

Records are serialized to the gateway in camelCase (``ownerId``,
``contractAmount``) to stay compatible with the existing data files, and
dumped in snake_case for API responses.
"""

from __future__ import annotations

import datetime as dt
import enum
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

ZERO = Decimal("0.00")
Q2 = Decimal("0.01")


class UserRole(str, enum.Enum):
    """Closed role set; every stored spelling is canonicalized here."""

    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "superAdmin"

    @classmethod
    def _missing_(cls, value: object) -> UserRole | None:
        if not isinstance(value, str):
            return None
        normalized = value.strip().replace("_", "").replace("-", "").replace(" ", "").lower()
        return _ROLE_SPELLINGS.get(normalized)

    @property
    def is_privileged(self) -> bool:
        return self in (UserRole.ADMIN, UserRole.SUPER_ADMIN)


_ROLE_SPELLINGS: dict[str, UserRole] = {
    "user": UserRole.USER,
    "admin": UserRole.ADMIN,
    "superadmin": UserRole.SUPER_ADMIN,
}


class PaymentMethod(str, enum.Enum):
    TRANSFER = "transfer"
    CASH = "cash"
    CHECK = "check"

    @classmethod
    def _missing_(cls, value: object) -> PaymentMethod | None:
        if not isinstance(value, str):
            return None
        return _PAYMENT_METHOD_LABELS.get(value.strip().lower())


# Labels written by the legacy Hebrew UI.
_PAYMENT_METHOD_LABELS: dict[str, PaymentMethod] = {
    "העברה": PaymentMethod.TRANSFER,
    "מזומן": PaymentMethod.CASH,
    "צ'ק": PaymentMethod.CHECK,
    "bank_transfer": PaymentMethod.TRANSFER,
    "cheque": PaymentMethod.CHECK,
}


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


class ExpenseType(str, enum.Enum):
    REGULAR = "regular"
    ADDITION = "addition"
    EXCEPTION = "exception"
    DAILY_WORKER = "daily-worker"


class MilestoneStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class EntityType(str, enum.Enum):
    PROJECT = "project"
    INCOME = "income"
    EXPENSE = "expense"
    MILESTONE = "milestone"
    SUPPLIER = "supplier"
    CATEGORY = "category"
    USER = "user"
    ORGANIZATION = "organization"
    SETTINGS = "settings"


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _as_utc(value: dt.datetime | None) -> dt.datetime | None:
    # Naive timestamps in stored data are UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value


def _to_date(value: Any) -> Any:
    # Legacy records store full ISO timestamps in date fields.
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, str) and len(value) > 10 and value[10] in ("T", " "):
        return dt.datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    return value


class LedgerRecord(BaseModel):
    """Base for gateway records: camelCase on the wire, unknown keys kept."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_document(self) -> dict[str, Any]:
        """Serialize for the gateway (camelCase JSON)."""

        return self.model_dump(mode="json", by_alias=True)

    def to_response(self) -> dict[str, Any]:
        """Serialize for API responses (snake_case JSON)."""

        return self.model_dump(mode="json")


class Income(LedgerRecord):
    id: str
    date: dt.date
    description: str = ""
    amount: Decimal
    paid_amount: Decimal | None = None
    remaining_amount: Decimal = ZERO
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: PaymentMethod = PaymentMethod.TRANSFER
    actual_payment_date: dt.date | None = None
    notes: str | None = None

    @field_validator("date", "actual_payment_date", mode="before")
    @classmethod
    def _normalize_dates(cls, value: Any) -> Any:
        return _to_date(value)

    @field_validator("payment_method", mode="before")
    @classmethod
    def _canonical_payment_method(cls, value: Any) -> Any:
        if value in (None, ""):
            return PaymentMethod.TRANSFER
        return PaymentMethod(value) if isinstance(value, str) else value

    @model_validator(mode="after")
    def _derive_payment_fields(self) -> Income:
        if self.paid_amount is None:
            self.paid_amount = ZERO
        self.remaining_amount = max(ZERO, self.amount - self.paid_amount).quantize(Q2)
        if self.paid_amount >= self.amount:
            self.payment_status = PaymentStatus.PAID
        elif self.paid_amount == 0:
            self.payment_status = PaymentStatus.PENDING
        else:
            self.payment_status = PaymentStatus.PARTIALLY_PAID
        return self


class Expense(LedgerRecord):
    id: str
    category: str
    subcategory: str | None = None
    date: dt.date
    supplier: str = ""
    supplier_id: str | None = None
    description: str = ""
    amount: Decimal
    has_vat: bool = False
    amount_with_vat: Decimal | None = None
    has_invoice: bool = False
    invoice_number: str | None = None
    expense_type: ExpenseType = ExpenseType.REGULAR
    notes: str | None = None

    @field_validator("date", mode="before")
    @classmethod
    def _normalize_dates(cls, value: Any) -> Any:
        return _to_date(value)


class Milestone(LedgerRecord):
    id: str
    name: str
    description: str | None = None
    amount: Decimal = ZERO
    percentage: Decimal = ZERO
    target_date: dt.date | None = None
    status: MilestoneStatus = MilestoneStatus.PENDING

    @field_validator("target_date", mode="before")
    @classmethod
    def _normalize_dates(cls, value: Any) -> Any:
        return _to_date(value)


class ProjectSupplier(LedgerRecord):
    id: str
    supplier_id: str | None = None
    name: str
    description: str | None = None
    contact_person: str | None = None
    phone: str | None = None
    email: str | None = None
    vat_number: str | None = None
    business_number: str | None = None
    address: str | None = None
    notes: str | None = None
    agreement_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO
    remaining_amount: Decimal = ZERO

    @model_validator(mode="after")
    def _derive_remaining(self) -> ProjectSupplier:
        self.remaining_amount = max(ZERO, self.agreement_amount - self.paid_amount).quantize(Q2)
        return self


class Project(LedgerRecord):
    id: str
    name: str
    description: str = ""
    owner_id: str | None = None
    created_by: str | None = None
    organization_id: str | None = None
    contract_amount: Decimal = ZERO
    is_archived: bool = False
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None
    incomes: list[Income] = Field(default_factory=list)
    expenses: list[Expense] = Field(default_factory=list)
    milestones: list[Milestone] = Field(default_factory=list)
    suppliers: list[ProjectSupplier] = Field(default_factory=list)

    @field_validator("created_at", "updated_at", mode="after")
    @classmethod
    def _utc_timestamps(cls, value: dt.datetime | None) -> dt.datetime | None:
        return _as_utc(value)

    @field_validator("incomes", "expenses", "milestones", "suppliers", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class Supplier(LedgerRecord):
    id: str
    name: str
    description: str | None = None
    contact_person: str | None = None
    phone: str | None = None
    email: str | None = None
    vat_number: str | None = None
    business_number: str | None = None
    address: str | None = None
    created_at: dt.datetime | None = None


class Subcategory(LedgerRecord):
    id: str
    name: str
    category_id: str | None = None


class Category(LedgerRecord):
    id: str
    name: str
    subcategories: list[Subcategory] = Field(default_factory=list)

    @field_validator("subcategories", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class User(LedgerRecord):
    id: str
    username: str
    full_name: str | None = None
    email: str | None = None
    role: UserRole = UserRole.USER
    organization_id: str | None = None
    is_active: bool = True
    last_login: dt.datetime | None = None
    created_at: dt.datetime | None = None

    @field_validator("last_login", "created_at", mode="after")
    @classmethod
    def _utc_timestamps(cls, value: dt.datetime | None) -> dt.datetime | None:
        return _as_utc(value)

    @field_validator("role", mode="before")
    @classmethod
    def _canonical_role(cls, value: Any) -> Any:
        if value in (None, ""):
            return UserRole.USER
        return UserRole(value) if isinstance(value, str) else value


class OrganizationSettings(LedgerRecord):
    vat_rate: Decimal = Decimal("18")
    tax_rate: Decimal = ZERO
    currency: str = "ILS"
    company_name: str | None = None


class Organization(LedgerRecord):
    id: str
    name: str
    contact_person: str | None = None
    email: str | None = None
    phone: str | None = None
    vat_number: str | None = None
    business_number: str | None = None
    logo: str | None = None
    settings: OrganizationSettings = Field(default_factory=OrganizationSettings)
    is_active: bool = True
    created_at: dt.datetime | None = None


class SystemSettings(LedgerRecord):
    vat_rate: Decimal = Decimal("18")
    tax_rate: Decimal = ZERO
    company_name: str | None = None
    company_address: str | None = None
    company_phone: str | None = None
    company_email: str | None = None
    currency: str = "ILS"
    updated_at: dt.datetime | None = None


class ActivityLog(LedgerRecord):
    """Append-only audit entry; never edited once written."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    username: str = ""
    action: str
    entity_type: EntityType
    entity_id: str
    details: str = ""
    timestamp: dt.datetime

    @field_validator("timestamp", mode="after")
    @classmethod
    def _utc_timestamp(cls, value: dt.datetime) -> dt.datetime:
        return _as_utc(value)


class CustomLimits(LedgerRecord):
    max_projects: int | None = None
    can_view_others_projects: bool = False
    can_edit_system_settings: bool = False
    can_export_data: bool = False
    can_manage_users: bool = False


class UserPermissions(LedgerRecord):
    user_id: str
    permissions: list[str] = Field(default_factory=list)
    custom_limits: CustomLimits | None = None
