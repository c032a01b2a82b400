from __future__ import annotations

import json

import httpx
import pytest

from kablan.repositories.gateway import (
    ACTIVITY_LOGS,
    PROJECTS,
    SETTINGS,
    USER_PERMISSIONS,
    GatewayError,
    GatewayUnavailableError,
    RecordNotFoundError,
)
from kablan.repositories.remote import RemoteGatewayRepository


def _repository(handler) -> tuple[RemoteGatewayRepository, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def recording_handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = httpx.Client(base_url="http://gateway.test", transport=httpx.MockTransport(recording_handler))
    return RemoteGatewayRepository(client), seen


def test_list_uses_plural_get_action() -> None:
    repository, seen = _repository(lambda request: httpx.Response(200, json=[{"id": "p1", "name": "Villa"}]))

    records = repository.list_records(PROJECTS)

    assert records == [{"id": "p1", "name": "Villa"}]
    assert seen[0].method == "GET"
    assert seen[0].url.path == "/api.php"
    assert seen[0].url.params["action"] == "getProjects"


def test_create_actions_follow_collection_verbs() -> None:
    repository, seen = _repository(lambda request: httpx.Response(200, json={"success": True}))

    created = repository.create_record(ACTIVITY_LOGS, {"id": "l1", "action": "x"})
    repository.create_record(PROJECTS, {"id": "p1"})

    assert created == {"id": "l1", "action": "x"}
    assert [request.url.params["action"] for request in seen] == ["addActivityLog", "createProject"]
    assert json.loads(seen[0].content) == {"id": "l1", "action": "x"}


def test_update_without_record_echo_returns_merged_changes() -> None:
    repository, seen = _repository(lambda request: httpx.Response(200, json={"success": True}))

    updated = repository.update_record(USER_PERMISSIONS, "u1", {"permissions": ["projects.view"]})

    assert updated == {"permissions": ["projects.view"], "userId": "u1"}
    assert seen[0].method == "PUT"
    assert seen[0].url.params["action"] == "updateUserPermission"
    assert seen[0].url.params["id"] == "u1"


def test_singleton_document_actions() -> None:
    repository, seen = _repository(lambda request: httpx.Response(200, json={"vatRate": "18"}))

    document = repository.get_document(SETTINGS)
    repository.put_document(SETTINGS, {"vatRate": "17"})

    assert document == {"vatRate": "18"}
    assert [request.url.params["action"] for request in seen] == ["getSettings", "updateSettings"]


def test_html_body_marks_gateway_unavailable() -> None:
    repository, _ = _repository(
        lambda request: httpx.Response(200, text="<!DOCTYPE html><html><body>Fatal error</body></html>")
    )

    with pytest.raises(GatewayUnavailableError):
        repository.list_records(PROJECTS)


def test_transport_error_marks_gateway_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    repository, _ = _repository(handler)

    with pytest.raises(GatewayUnavailableError):
        repository.list_records(PROJECTS)


def test_error_status_uses_gateway_message() -> None:
    repository, _ = _repository(lambda request: httpx.Response(400, json={"error": "Invalid project payload"}))

    with pytest.raises(GatewayError) as exc_info:
        repository.create_record(PROJECTS, {"id": "p1"})

    assert exc_info.value.message == "Invalid project payload"
    assert exc_info.value.status_code == 400
    assert not isinstance(exc_info.value, GatewayUnavailableError)


def test_missing_record_raises_not_found() -> None:
    repository, _ = _repository(lambda request: httpx.Response(404, json={"error": "Not found"}))

    with pytest.raises(RecordNotFoundError):
        repository.delete_record(PROJECTS, "missing")


def test_non_list_payload_for_collection_is_an_error() -> None:
    repository, _ = _repository(lambda request: httpx.Response(200, json={"projects": []}))

    with pytest.raises(GatewayError):
        repository.list_records(PROJECTS)
