"""Append-only activity log: writing entries and filtering the trail."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Literal
from uuid import uuid4

from kablan.models.entities import ActivityLog, EntityType, Project, User, utcnow
from kablan.repositories.gateway import DocumentRepository, GatewayError
from kablan.repositories.ledger_repository import LedgerRepository
from kablan.services.errors import gateway_errors

if TYPE_CHECKING:
    from kablan.core.auth import RequestUserContext

logger = logging.getLogger(__name__)

ActivityWindow = Literal["today", "7d", "30d", "all"]

WINDOW_DAYS: dict[str, int] = {"7d": 7, "30d": 30}


@dataclass(slots=True)
class ActivityFilter:
    window: ActivityWindow = "7d"
    search: str | None = None
    user_id: str | None = None
    project_id: str | None = None
    entity_type: EntityType | None = None
    action: str | None = None


def project_entity_ids(project: Project) -> set[str]:
    """Ids whose log entries belong to ``project``."""

    ids = {project.id}
    ids.update(income.id for income in project.incomes)
    ids.update(expense.id for expense in project.expenses)
    ids.update(milestone.id for milestone in project.milestones)
    return ids


def _window_start(window: ActivityWindow, now: datetime) -> datetime | None:
    if window == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if window in WINDOW_DAYS:
        return now - timedelta(days=WINDOW_DAYS[window])
    return None


def filter_activity_logs(
    logs: Iterable[ActivityLog],
    activity_filter: ActivityFilter,
    *,
    now: datetime,
    users: Mapping[str, User] | None = None,
    projects: Mapping[str, Project] | None = None,
) -> list[ActivityLog]:
    """Filter and sort log entries newest first without touching the inputs."""

    users = users or {}
    threshold = _window_start(activity_filter.window, now)
    needle = activity_filter.search.strip().lower() if activity_filter.search else ""

    project_ids: set[str] | None = None
    if activity_filter.project_id:
        project = (projects or {}).get(activity_filter.project_id)
        project_ids = project_entity_ids(project) if project is not None else {activity_filter.project_id}

    def matches(entry: ActivityLog) -> bool:
        if threshold is not None and entry.timestamp < threshold:
            return False
        if needle:
            full_name = users[entry.user_id].full_name if entry.user_id in users else None
            haystack = (entry.action, entry.details, entry.username, full_name or "")
            if not any(needle in value.lower() for value in haystack):
                return False
        if activity_filter.user_id and entry.user_id != activity_filter.user_id:
            return False
        if project_ids is not None and entry.entity_id not in project_ids:
            return False
        if activity_filter.entity_type is not None and entry.entity_type != activity_filter.entity_type:
            return False
        if activity_filter.action and activity_filter.action not in entry.action:
            return False
        return True

    return sorted((entry for entry in logs if matches(entry)), key=lambda entry: entry.timestamp, reverse=True)


def summarize_activity(logs: Iterable[ActivityLog]) -> dict[str, int]:
    entries = list(logs)
    return {
        "total": len(entries),
        "created": sum(1 for entry in entries if "created" in entry.action or "added" in entry.action),
        "updated": sum(1 for entry in entries if "updated" in entry.action),
        "deleted": sum(1 for entry in entries if "deleted" in entry.action),
    }


class ActivityService:
    """Write and read the activity trail."""

    def __init__(self, store: DocumentRepository) -> None:
        self.repo = LedgerRepository(store)

    def log_activity(
        self,
        context: RequestUserContext,
        *,
        action: str,
        entity_type: EntityType,
        entity_id: str,
        details: str = "",
    ) -> ActivityLog | None:
        """Append one entry; failures are logged and never raised."""

        entry = ActivityLog(
            id=str(uuid4()),
            user_id=context.user_id,
            username=context.username,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
            timestamp=utcnow(),
        )
        try:
            self.repo.append_activity_log(entry)
        except GatewayError as exc:
            logger.warning("Activity log write failed for %s %s/%s: %s", action, entity_type.value, entity_id, exc)
            return None
        return entry

    def list_activity(self, activity_filter: ActivityFilter, *, limit: int | None = None) -> dict:
        with gateway_errors():
            logs = self.repo.list_activity_logs()
            users = {user.id: user for user in self.repo.list_users()}
            projects = {project.id: project for project in self.repo.list_projects()} if activity_filter.project_id else {}
        filtered = filter_activity_logs(logs, activity_filter, now=utcnow(), users=users, projects=projects)
        summary = summarize_activity(filtered)
        if limit is not None:
            filtered = filtered[:limit]
        return {
            "summary": summary,
            "items": [entry.to_response() for entry in filtered],
        }
