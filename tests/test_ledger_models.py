from __future__ import annotations

from datetime import date
from decimal import Decimal

from kablan.models.entities import (
    Income,
    Milestone,
    PaymentMethod,
    PaymentStatus,
    Project,
    User,
    UserRole,
)
from kablan.services.calculations import (
    amount_with_vat,
    amount_without_vat,
    milestone_percentage,
    percent_of,
    rebalance_milestones,
)

VAT = Decimal("0.18")


def test_income_without_paid_amount_is_pending() -> None:
    income = Income.model_validate({"id": "i1", "date": "2024-03-01", "amount": "1000", "paidAmount": None})

    assert income.paid_amount == Decimal("0")
    assert income.remaining_amount == Decimal("1000.00")
    assert income.payment_status is PaymentStatus.PENDING


def test_income_payment_status_follows_paid_amount() -> None:
    partial = Income(id="i1", date=date(2024, 3, 1), amount=Decimal("1000"), paid_amount=Decimal("400"))
    pending = Income(id="i2", date=date(2024, 3, 1), amount=Decimal("1000"), paid_amount=Decimal("0"))

    assert partial.payment_status is PaymentStatus.PARTIALLY_PAID
    assert partial.remaining_amount == Decimal("600.00")
    assert pending.payment_status is PaymentStatus.PENDING
    assert pending.remaining_amount == Decimal("1000.00")


def test_legacy_income_fields_are_normalized() -> None:
    income = Income.model_validate(
        {
            "id": "i1",
            "date": "2024-03-31T23:59:00Z",
            "amount": "250",
            "paymentMethod": "מזומן",
        }
    )

    assert income.date == date(2024, 3, 31)
    assert income.payment_method is PaymentMethod.CASH


def test_role_spellings_are_canonicalized() -> None:
    assert User.model_validate({"id": "a", "username": "a", "role": "super_admin"}).role is UserRole.SUPER_ADMIN
    assert User.model_validate({"id": "b", "username": "b", "role": "Admin"}).role is UserRole.ADMIN
    assert User.model_validate({"id": "c", "username": "c", "role": ""}).role is UserRole.USER


def test_project_document_uses_camel_case_keys() -> None:
    project = Project(id="p1", name="Villa", owner_id="u1", contract_amount=Decimal("100000"))

    document = project.to_document()
    response = project.to_response()

    assert document["ownerId"] == "u1"
    assert document["contractAmount"] == "100000"
    assert response["owner_id"] == "u1"
    assert Project.model_validate(document).owner_id == "u1"


def test_missing_nested_lists_load_as_empty() -> None:
    project = Project.model_validate({"id": "p1", "name": "Old", "incomes": None, "expenses": None})

    assert project.incomes == []
    assert project.expenses == []


def test_vat_helpers_round_to_cents() -> None:
    assert amount_with_vat(Decimal("1000"), VAT) == Decimal("1180.00")
    assert amount_without_vat(Decimal("1180"), VAT) == Decimal("1000.00")
    assert amount_with_vat(Decimal("0.05"), VAT) == Decimal("0.06")


def test_percent_of_zero_whole_is_zero() -> None:
    assert percent_of(Decimal("10"), Decimal("0")) == Decimal("0")
    assert percent_of(Decimal("30000"), Decimal("50000")) == Decimal("60.00")


def test_milestone_percentage_guards_non_positive_contract() -> None:
    assert milestone_percentage(Decimal("25000"), Decimal("100000")) == Decimal("25.00")
    assert milestone_percentage(Decimal("25000"), Decimal("0")) == Decimal("0")


def test_rebalance_milestones_recomputes_against_new_contract() -> None:
    milestones = [
        Milestone(id="m1", name="Foundation", amount=Decimal("25000"), percentage=Decimal("25.00")),
        Milestone(id="m2", name="Roof", amount=Decimal("75000"), percentage=Decimal("75.00")),
    ]

    rebalanced = rebalance_milestones(milestones, Decimal("200000"))

    assert [item.percentage for item in rebalanced] == [Decimal("12.50"), Decimal("37.50")]
    assert milestones[0].percentage == Decimal("25.00")
