from __future__ import annotations

import asyncio
import logging
import time
from datetime import date, datetime, timezone
from functools import partial
from typing import Any, Awaitable, Callable

import httpx

from workforce_summary.errors import QuotaExhaustedError, RateLimitedError, UpstreamError
from workforce_summary.schemas import (
    TimeTrackingProject,
    TimeTrackingUser,
    TrackedHours,
    TrackedProjectHours,
    TrackedUserSeconds,
)
from workforce_summary.services.cache import TTLCache, month_key_ttl
from workforce_summary.services.calendar import month_bounds
from workforce_summary.services.circuit import CircuitBreaker
from workforce_summary.services.schedules import local_today
from workforce_summary.settings import Settings, get_settings, is_time_tracking_configured

logger = logging.getLogger("workforce_summary.time_tracking")

SOURCE_NAME = "time_tracking"
_ALL = "all"


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.text.strip() or response.reason_phrase


class TimeTrackingClient:
    """HTTP access to the time-tracking workspace and reports APIs.

    Calls are spaced by ``time_tracking_min_interval_seconds`` (the upstream
    is a leaky bucket of about one request per second). Burst limits (429),
    timeouts and connection errors are retried with linear backoff; quota
    exhaustion (402) is never retried and, on the reports API, opens the
    circuit breaker.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        breaker: CircuitBreaker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or get_settings()
        self.breaker = breaker or CircuitBreaker(
            SOURCE_NAME,
            cooldown_seconds=self.settings.time_tracking_quota_cooldown_seconds,
            clock=clock,
        )
        self._sleep = sleep
        self._clock = clock
        self._throttle_lock = asyncio.Lock()
        self._last_request_at: float | None = None
        self._client = httpx.AsyncClient(
            auth=(self.settings.time_tracking_api_token or "", "api_token"),
            headers={"Content-Type": "application/json"},
            timeout=self.settings.time_tracking_request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "TimeTrackingClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def workspace_id(self) -> str:
        return (self.settings.time_tracking_workspace_id or "").strip()

    async def _throttle(self) -> None:
        async with self._throttle_lock:
            if self._last_request_at is not None:
                wait_seconds = self.settings.time_tracking_min_interval_seconds - (
                    self._clock() - self._last_request_at
                )
                if wait_seconds > 0:
                    await self._sleep(wait_seconds)
            self._last_request_at = self._clock()

    async def _backoff(self, attempt: int, reason: str) -> None:
        delay = (attempt + 1) * self.settings.time_tracking_backoff_step_seconds
        logger.warning(
            "time_tracking_retry",
            extra={
                "reason": reason,
                "attempt": attempt + 1,
                "max_retries": self.settings.time_tracking_max_retries,
                "delay_seconds": delay,
            },
        )
        await self._sleep(delay)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json: dict[str, Any] | None = None,
        guarded: bool = False,
    ) -> Any:
        if guarded:
            self.breaker.check()

        max_retries = self.settings.time_tracking_max_retries
        attempt = 0
        while True:
            await self._throttle()
            try:
                response = await self._client.request(method, url, json=json)
            except httpx.TransportError as exc:
                if attempt < max_retries:
                    await self._backoff(attempt, type(exc).__name__)
                    attempt += 1
                    continue
                raise UpstreamError(SOURCE_NAME, f"network error: {exc}") from exc

            if response.status_code == 429:
                if attempt < max_retries:
                    await self._backoff(attempt, "rate_limited")
                    attempt += 1
                    continue
                raise RateLimitedError(SOURCE_NAME, f"rate limited after {attempt + 1} attempts")

            if response.status_code == 402:
                if guarded:
                    self.breaker.trip()
                raise QuotaExhaustedError(SOURCE_NAME, f"API error (402): {_error_message(response)}")

            if response.status_code >= 400:
                raise UpstreamError(
                    SOURCE_NAME,
                    f"API error ({response.status_code}): {_error_message(response)}",
                    upstream_status=response.status_code,
                )

            return response.json()

    async def list_workspace_users(self) -> list[dict[str, Any]]:
        base = self.settings.time_tracking_api_base_url.rstrip("/")
        payload = await self._request("GET", f"{base}/api/v9/workspaces/{self.workspace_id}/users")
        return list(payload or [])

    async def list_projects(self) -> list[dict[str, Any]]:
        base = self.settings.time_tracking_api_base_url.rstrip("/")
        payload = await self._request("GET", f"{base}/api/v9/workspaces/{self.workspace_id}/projects")
        return list(payload or [])

    async def list_clients(self) -> list[dict[str, Any]]:
        base = self.settings.time_tracking_api_base_url.rstrip("/")
        payload = await self._request("GET", f"{base}/api/v9/workspaces/{self.workspace_id}/clients")
        return list(payload or [])

    async def fetch_summary_report(self, year: int, month: int) -> dict[str, Any]:
        start_date, end_date = month_bounds(year, month)
        base = self.settings.time_tracking_reports_base_url.rstrip("/")
        payload = await self._request(
            "POST",
            f"{base}/workspace/{self.workspace_id}/summary/time_entries",
            json={
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "grouping": "users",
                "sub_grouping": "projects",
                "include_time_entry_ids": False,
            },
            guarded=True,
        )
        return payload or {}


def parse_workspace_users(raw_users: list[dict[str, Any]]) -> list[TimeTrackingUser]:
    users: list[TimeTrackingUser] = []
    for raw in raw_users:
        email = (raw.get("email") or "").lower().strip()
        users.append(
            TimeTrackingUser(
                id=int(raw["id"]),
                email=email,
                full_name=raw.get("fullname") or raw.get("email") or f"User {raw['id']}",
            )
        )
    return users


def _sub_group_billable_seconds(sub_group: dict[str, Any]) -> int:
    if sub_group.get("billable_seconds") is not None:
        return int(sub_group["billable_seconds"])
    return sum(int(rate.get("billable_seconds") or 0) for rate in sub_group.get("rates") or [])


def parse_summary_report(
    payload: dict[str, Any],
    *,
    projects: dict[int, TimeTrackingProject],
    clients: dict[int, str],
) -> dict[int, TrackedUserSeconds]:
    result: dict[int, TrackedUserSeconds] = {}
    for group in payload.get("groups") or []:
        user_id = int(group["id"])
        total_seconds = 0
        billable_seconds = 0
        project_ids: list[int] = []
        for sub_group in group.get("sub_groups") or []:
            total_seconds += int(sub_group.get("seconds") or 0)
            billable_seconds += _sub_group_billable_seconds(sub_group)
            if sub_group.get("id") and sub_group["id"] not in project_ids:
                project_ids.append(sub_group["id"])

        project_names: list[str] = []
        client_ids: list[int] = []
        for project_id in project_ids:
            project = projects.get(project_id)
            if project is None:
                continue
            project_names.append(project.name)
            if project.client_id and project.client_id not in client_ids:
                client_ids.append(project.client_id)

        result[user_id] = TrackedUserSeconds(
            user_id=user_id,
            total_seconds=total_seconds,
            billable_seconds=billable_seconds,
            project_names=project_names,
            client_names=[clients[client_id] for client_id in client_ids if client_id in clients],
        )
    return result


def to_tracked_hours(seconds: TrackedUserSeconds) -> TrackedHours:
    total_hours = round(seconds.total_seconds / 3600, 2)
    billable_hours = round(seconds.billable_seconds / 3600, 2)
    return TrackedHours(
        user_id=seconds.user_id,
        total_hours=total_hours,
        billable_hours=billable_hours,
        non_billable_hours=round(total_hours - billable_hours, 2),
        projects=", ".join(seconds.project_names) or None,
        clients=", ".join(seconds.client_names) or None,
    )


def parse_project_breakdown(
    payload: dict[str, Any],
    *,
    year: int,
    month: int,
    users: list[TimeTrackingUser],
    projects: dict[int, TimeTrackingProject],
    clients: dict[int, str],
) -> list[TrackedProjectHours]:
    """One row per user and project sub-group of a summary report."""
    users_by_id = {user.id: user for user in users}
    rows: list[TrackedProjectHours] = []
    for group in payload.get("groups") or []:
        user_id = int(group["id"])
        user = users_by_id.get(user_id)
        for sub_group in group.get("sub_groups") or []:
            total_hours = round(int(sub_group.get("seconds") or 0) / 3600, 2)
            billable_hours = round(_sub_group_billable_seconds(sub_group) / 3600, 2)

            project_id = int(sub_group["id"]) if sub_group.get("id") else None
            project = projects.get(project_id) if project_id else None
            if project is not None:
                project_name = project.name
            else:
                project_name = f"Project {project_id}" if project_id else "No Project"
            client_id = project.client_id if project else None
            if client_id:
                client_name = clients.get(client_id) or f"Client {client_id}"
            else:
                client_name = "No Client"

            rows.append(
                TrackedProjectHours(
                    user_id=user_id,
                    user_name=user.full_name if user else f"User {user_id}",
                    user_email=(user.email or None) if user else None,
                    project_id=project_id,
                    project_name=project_name,
                    client_id=client_id,
                    client_name=client_name,
                    year=year,
                    month=month,
                    total_hours=total_hours,
                    billable_hours=billable_hours,
                    non_billable_hours=round(total_hours - billable_hours, 2),
                )
            )
    return rows


class TimeTrackingService:
    """Cached, stale-tolerant view over the time-tracking upstream."""

    def __init__(
        self,
        client: TimeTrackingClient | None,
        *,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
        today: Callable[[], date] | None = None,
    ):
        self.settings = settings or get_settings()
        self.client = client
        today = today or partial(local_today, self.settings.default_timezone)
        month_ttl = month_key_ttl(
            current_month_ttl_seconds=self.settings.month_cache_ttl_seconds,
            historical_ttl_seconds=self.settings.historical_month_cache_ttl_seconds,
            today=today,
        )
        self.last_refresh: datetime | None = None
        metadata_ttl = self.settings.metadata_cache_ttl_seconds
        self._users: TTLCache[str, list[TimeTrackingUser]] = TTLCache(
            "time_tracking_users", self._fetch_users, ttl_seconds=metadata_ttl, clock=clock
        )
        self._projects: TTLCache[str, dict[int, TimeTrackingProject]] = TTLCache(
            "time_tracking_projects", self._fetch_projects, ttl_seconds=metadata_ttl, clock=clock
        )
        self._clients: TTLCache[str, dict[int, str]] = TTLCache(
            "time_tracking_clients", self._fetch_clients, ttl_seconds=metadata_ttl, clock=clock
        )
        self._summaries: TTLCache[tuple[int, int], dict[int, TrackedUserSeconds]] = TTLCache(
            "time_tracking_summary",
            self._fetch_summary,
            ttl_seconds=month_ttl,
            max_entries=self.settings.month_cache_max_entries,
            clock=clock,
        )
        self._breakdowns: TTLCache[tuple[int, int], list[TrackedProjectHours]] = TTLCache(
            "time_tracking_project_breakdown",
            self._fetch_breakdown,
            ttl_seconds=month_ttl,
            max_entries=self.settings.month_cache_max_entries,
            clock=clock,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "TimeTrackingService":
        settings = settings or get_settings()
        client = TimeTrackingClient(settings) if is_time_tracking_configured(settings) else None
        return cls(client, settings=settings)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def _require_client(self) -> TimeTrackingClient:
        if self.client is None:
            raise UpstreamError(SOURCE_NAME, "time tracking is not configured")
        return self.client

    def _mark_refreshed(self) -> None:
        self.last_refresh = datetime.now(timezone.utc)

    async def _fetch_users(self, _key: str) -> list[TimeTrackingUser]:
        users = parse_workspace_users(await self._require_client().list_workspace_users())
        self._mark_refreshed()
        logger.info("time_tracking_users_cached", extra={"count": len(users)})
        return users

    async def _fetch_projects(self, _key: str) -> dict[int, TimeTrackingProject]:
        raw_projects = await self._require_client().list_projects()
        projects = {
            int(raw["id"]): TimeTrackingProject(id=int(raw["id"]), name=raw.get("name") or "", client_id=raw.get("client_id"))
            for raw in raw_projects
        }
        logger.info("time_tracking_projects_cached", extra={"count": len(projects)})
        return projects

    async def _fetch_clients(self, _key: str) -> dict[int, str]:
        raw_clients = await self._require_client().list_clients()
        clients = {int(raw["id"]): raw.get("name") or "" for raw in raw_clients}
        logger.info("time_tracking_clients_cached", extra={"count": len(clients)})
        return clients

    async def _fetch_summary(self, key: tuple[int, int]) -> dict[int, TrackedUserSeconds]:
        year, month = key
        client = self._require_client()
        client.breaker.check()
        projects, clients = await asyncio.gather(self.get_projects(), self.get_clients())
        payload = await client.fetch_summary_report(year, month)
        summary = parse_summary_report(payload, projects=projects, clients=clients)
        self._mark_refreshed()
        logger.info(
            "time_tracking_summary_cached",
            extra={"year": year, "month": month, "users": len(summary)},
        )
        return summary

    async def _fetch_breakdown(self, key: tuple[int, int]) -> list[TrackedProjectHours]:
        year, month = key
        client = self._require_client()
        client.breaker.check()
        users, projects, clients = await asyncio.gather(self.get_users(), self.get_projects(), self.get_clients())
        payload = await client.fetch_summary_report(year, month)
        rows = parse_project_breakdown(
            payload,
            year=year,
            month=month,
            users=users,
            projects=projects,
            clients=clients,
        )
        self._mark_refreshed()
        logger.info(
            "time_tracking_breakdown_cached",
            extra={"year": year, "month": month, "rows": len(rows), "users": len(payload.get("groups") or [])},
        )
        return rows

    async def get_users(self) -> list[TimeTrackingUser]:
        if not self.enabled:
            return []
        return await self._users.get(_ALL)

    async def get_projects(self) -> dict[int, TimeTrackingProject]:
        if not self.enabled:
            return {}
        return await self._projects.get(_ALL)

    async def get_clients(self) -> dict[int, str]:
        if not self.enabled:
            return {}
        return await self._clients.get(_ALL)

    async def get_monthly_summary(self, year: int, month: int) -> dict[int, TrackedUserSeconds]:
        if not self.enabled:
            return {}
        return await self._summaries.get((year, month))

    async def get_hours_by_month(self, year: int, month: int) -> dict[int, TrackedHours]:
        summary = await self.get_monthly_summary(year, month)
        return {user_id: to_tracked_hours(seconds) for user_id, seconds in summary.items()}

    async def get_project_breakdown(self, year: int, month: int) -> list[TrackedProjectHours]:
        if not self.enabled:
            return []
        return list(await self._breakdowns.get((year, month)))

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()
