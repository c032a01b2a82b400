"""HTTP client for the JSON-file gateway (``api.php?action=...``)."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from kablan.repositories.gateway import (
    CollectionSpec,
    DocumentRepository,
    GatewayError,
    GatewayUnavailableError,
    RecordNotFoundError,
)

logger = logging.getLogger(__name__)

GATEWAY_SCRIPT = "/api.php"


def _looks_like_html(text: str) -> bool:
    head = text.lstrip()[:15].lower()
    return head.startswith("<!doctype") or head.startswith("<html")


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.reason_phrase or "Gateway request failed."
    if isinstance(payload, dict):
        message = payload.get("error") or payload.get("message")
        if message:
            return str(message)
    return response.reason_phrase or "Gateway request failed."


class RemoteGatewayRepository(DocumentRepository):
    """Gateway-backed repository.

    Every call is a single HTTP request; there is no retry and no timeout
    beyond the client's configured one.
    """

    def __init__(self, client: httpx.Client) -> None:
        self.client = client

    @classmethod
    def from_url(cls, base_url: str, *, timeout: float) -> RemoteGatewayRepository:
        client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )
        return cls(client)

    def _request(
        self,
        method: str,
        action: str,
        *,
        record_id: str | None = None,
        body: dict[str, Any] | None = None,
    ) -> Any:
        params = {"action": action}
        if record_id is not None:
            params["id"] = record_id
        try:
            response = self.client.request(
                method,
                GATEWAY_SCRIPT,
                params=params,
                content=json.dumps(body, ensure_ascii=False) if body is not None else None,
            )
        except httpx.TransportError as exc:
            raise GatewayUnavailableError(f"Gateway unreachable during {action}: {exc}") from exc

        text = response.text
        if _looks_like_html(text):
            # A PHP/host error page means the gateway itself is not serving.
            raise GatewayUnavailableError(
                f"Gateway returned HTML instead of JSON for {action}.",
                status_code=response.status_code,
            )
        if response.is_error:
            if response.status_code == 404 and record_id is not None:
                raise RecordNotFoundError(action, record_id)
            raise GatewayError(_error_message(response), status_code=response.status_code)
        if not text.strip():
            return {}
        try:
            return json.loads(text)
        except ValueError as exc:
            raise GatewayError(f"Gateway returned malformed JSON for {action}.", response.status_code) from exc

    def list_records(self, spec: CollectionSpec) -> list[dict[str, Any]]:
        payload = self._request("GET", f"get{spec.plural}")
        if not isinstance(payload, list):
            raise GatewayError(f"Gateway returned a non-list payload for {spec.name}.")
        return payload

    def create_record(self, spec: CollectionSpec, record: dict[str, Any]) -> dict[str, Any]:
        payload = self._request("POST", f"{spec.create_verb}{spec.entity}", body=record)
        if isinstance(payload, dict) and spec.id_field in payload:
            return payload
        return record

    def update_record(self, spec: CollectionSpec, record_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        payload = self._request("PUT", f"update{spec.entity}", record_id=record_id, body=changes)
        # Some gateway actions answer {"success": true} instead of the record.
        if isinstance(payload, dict) and spec.id_field in payload:
            return payload
        return {**changes, spec.id_field: record_id}

    def delete_record(self, spec: CollectionSpec, record_id: str) -> None:
        self._request("DELETE", f"delete{spec.entity}", record_id=record_id)

    def get_document(self, spec: CollectionSpec) -> dict[str, Any]:
        payload = self._request("GET", f"get{spec.entity}")
        return payload if isinstance(payload, dict) else {}

    def put_document(self, spec: CollectionSpec, changes: dict[str, Any]) -> dict[str, Any]:
        payload = self._request("PUT", f"update{spec.entity}", body=changes)
        return payload if isinstance(payload, dict) else changes

    def close(self) -> None:
        self.client.close()
