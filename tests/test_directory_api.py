from __future__ import annotations

from decimal import Decimal

from fastapi.testclient import TestClient

from kablan.models.entities import User, UserPermissions, UserRole
from kablan.repositories.gateway import SETTINGS, USER_PERMISSIONS, USERS, DocumentRepository


def _headers(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


def _seed_users(store: DocumentRepository) -> None:
    for user in (
        User(id="super-admin", username="root", role=UserRole.SUPER_ADMIN),
        User(id="admin-a", username="admin-a", role=UserRole.ADMIN, organization_id="org-a"),
        User(id="u1", username="u1", organization_id="org-a"),
        User(id="u2", username="u2", organization_id="org-b"),
    ):
        store.create_record(USERS, user.to_document())


def test_org_admin_sees_and_creates_users_in_own_organization(client: TestClient, store: DocumentRepository) -> None:
    _seed_users(store)

    listed = client.get("/api/v1/admin/users", headers=_headers("admin-a"))
    assert [user["id"] for user in listed.json()["items"]] == ["admin-a", "u1"]

    created = client.post(
        "/api/v1/admin/users",
        headers=_headers("admin-a"),
        json={"username": "NewHire", "organization_id": "org-b"},
    )
    assert created.status_code == 201
    assert created.json()["username"] == "newhire"
    assert created.json()["organization_id"] == "org-a"

    hidden = client.get("/api/v1/admin/users/u2", headers=_headers("admin-a"))
    assert hidden.status_code == 404


def test_duplicate_username_conflicts(client: TestClient, store: DocumentRepository) -> None:
    _seed_users(store)

    response = client.post("/api/v1/admin/users", headers=_headers("super-admin"), json={"username": "U1"})

    assert response.status_code == 409


def test_only_super_admin_grants_super_admin_role(client: TestClient, store: DocumentRepository) -> None:
    _seed_users(store)

    denied = client.post(
        "/api/v1/admin/users",
        headers=_headers("admin-a"),
        json={"username": "boss", "role": "superAdmin"},
    )
    allowed = client.post(
        "/api/v1/admin/users",
        headers=_headers("super-admin"),
        json={"username": "boss", "role": "superAdmin"},
    )

    assert denied.status_code == 403
    assert allowed.status_code == 201
    assert allowed.json()["role"] == "superAdmin"


def test_user_delete_rules(client: TestClient, store: DocumentRepository) -> None:
    _seed_users(store)
    store.create_record(USER_PERMISSIONS, UserPermissions(user_id="u2", permissions=["projects.view"]).to_document())

    self_delete = client.delete("/api/v1/admin/users/super-admin", headers=_headers("super-admin"))
    admin_delete = client.delete("/api/v1/admin/users/admin-a", headers=_headers("super-admin"))
    user_delete = client.delete("/api/v1/admin/users/u2", headers=_headers("super-admin"))

    assert self_delete.status_code == 409
    assert admin_delete.status_code == 409
    assert user_delete.status_code == 204
    assert store.list_records(USER_PERMISSIONS) == []


def test_deactivated_user_loses_access(client: TestClient, store: DocumentRepository) -> None:
    _seed_users(store)

    updated = client.patch("/api/v1/admin/users/u1", headers=_headers("super-admin"), json={"is_active": False})

    assert updated.status_code == 200
    assert client.get("/api/v1/me", headers=_headers("u1")).status_code == 401


def test_organizations_are_super_admin_only(client: TestClient, store: DocumentRepository) -> None:
    _seed_users(store)

    denied = client.post("/api/v1/admin/organizations", headers=_headers("admin-a"), json={"name": "Acme"})
    created = client.post(
        "/api/v1/admin/organizations",
        headers=_headers("super-admin"),
        json={"name": "Acme", "vat_rate": "17"},
    )
    assert denied.status_code == 403
    assert created.status_code == 201
    organization_id = created.json()["id"]
    assert Decimal(created.json()["settings"]["vat_rate"]) == Decimal("17")

    updated = client.patch(
        f"/api/v1/admin/organizations/{organization_id}",
        headers=_headers("super-admin"),
        json={"currency": "USD"},
    )
    assert updated.json()["settings"]["currency"] == "USD"
    assert Decimal(updated.json()["settings"]["vat_rate"]) == Decimal("17")

    toggled = client.post(f"/api/v1/admin/organizations/{organization_id}/toggle-active", headers=_headers("super-admin"))
    assert toggled.json()["is_active"] is False

    overview = client.get("/api/v1/dashboards/organizations", headers=_headers("super-admin"))
    assert overview.json()["total_organizations"] == 1
    assert overview.json()["active_organizations"] == 0


def test_category_and_subcategory_management(client: TestClient, store: DocumentRepository) -> None:
    _seed_users(store)

    listed = client.get("/api/v1/categories", headers=_headers("u1"))
    assert [category["name"] for category in listed.json()["items"]] == ["חומרי בנייה", "קבלני משנה", "חשמל"]

    denied = client.post("/api/v1/categories", headers=_headers("u1"), json={"name": "אינסטלציה"})
    duplicate = client.post("/api/v1/categories", headers=_headers("super-admin"), json={"name": "חשמל"})
    assert denied.status_code == 403
    assert duplicate.status_code == 409

    with_sub = client.post(
        "/api/v1/categories/3/subcategories",
        headers=_headers("super-admin"),
        json={"name": "תאורה"},
    )
    assert with_sub.status_code == 201
    subcategory = with_sub.json()["subcategories"][0]
    assert subcategory["name"] == "תאורה"

    removed = client.delete(
        f"/api/v1/categories/3/subcategories/{subcategory['id']}",
        headers=_headers("super-admin"),
    )
    assert removed.json()["subcategories"] == []


def test_supplier_directory(client: TestClient, store: DocumentRepository) -> None:
    _seed_users(store)

    created = client.post(
        "/api/v1/suppliers",
        headers=_headers("super-admin"),
        json={"name": "Beton Ltd", "phone": "03-5555555"},
    )
    assert created.status_code == 201

    renamed = client.patch(
        f"/api/v1/suppliers/{created.json()['id']}",
        headers=_headers("super-admin"),
        json={"name": "Beton Group"},
    )
    assert renamed.json()["name"] == "Beton Group"
    assert renamed.json()["phone"] == "03-5555555"

    listed = client.get("/api/v1/suppliers", headers=_headers("u1"))
    assert {supplier["name"] for supplier in listed.json()["items"]} == {"Beton Group", "ספק כללי"}


def test_system_settings_merge(client: TestClient, store: DocumentRepository) -> None:
    _seed_users(store)

    denied = client.patch("/api/v1/settings", headers=_headers("u1"), json={"vat_rate": "17"})
    updated = client.patch(
        "/api/v1/settings",
        headers=_headers("super-admin"),
        json={"vat_rate": "17", "company_name": "Kablan"},
    )

    assert denied.status_code == 403
    assert updated.status_code == 200
    assert Decimal(updated.json()["vat_rate"]) == Decimal("17")
    assert store.get_document(SETTINGS)["companyName"] == "Kablan"

    read_back = client.get("/api/v1/settings", headers=_headers("u1"))
    assert read_back.json()["company_name"] == "Kablan"
    assert read_back.json()["currency"] == "ILS"
