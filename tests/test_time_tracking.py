from datetime import date
import json
import unittest
from unittest.mock import patch

import httpx

from workforce_summary.errors import CircuitOpenError, QuotaExhaustedError, RateLimitedError, UpstreamError
from workforce_summary.services.time_tracking import (
    TimeTrackingClient,
    TimeTrackingService,
    parse_project_breakdown,
    parse_workspace_users,
)
from workforce_summary.settings import Settings, is_time_tracking_configured

PROJECTS = [{"id": 10, "name": "Alpha", "client_id": 5}, {"id": 12, "name": "Internal"}]
CLIENTS = [{"id": 5, "name": "ACME"}]
SUMMARY = {
    "groups": [
        {
            "id": 1,
            "sub_groups": [
                {"id": 10, "seconds": 7200, "billable_seconds": 3600},
                {"id": 11, "seconds": 1800, "rates": [{"billable_seconds": 900}]},
            ],
        },
        {"id": 2, "sub_groups": [{"id": 12, "seconds": 3600}]},
    ]
}


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class Upstream:
    """Scripted responses keyed by ``(method, path suffix)``."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.responses: dict[tuple[str, str], list[httpx.Response | Exception]] = {}

    def script(self, method: str, suffix: str, *responses: httpx.Response | Exception) -> None:
        self.responses[(method, suffix)] = list(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for (method, suffix), queue in self.responses.items():
            if request.method == method and request.url.path.endswith(suffix):
                item = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(item, Exception):
                    raise item
                return item
        return httpx.Response(404, json={"message": "not found"})

    def count(self, suffix: str) -> int:
        return sum(1 for request in self.requests if request.url.path.endswith(suffix))


def _settings(**overrides) -> Settings:
    values = {
        "time_tracking_api_token": "token",
        "time_tracking_workspace_id": "42",
    }
    values.update(overrides)
    return Settings(**values)


class TimeTrackingClientTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.upstream = Upstream()
        self.clock = FakeClock()
        self.sleeps: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            self.sleeps.append(seconds)
            self.clock.now += seconds

        self.client = TimeTrackingClient(
            _settings(),
            transport=httpx.MockTransport(self.upstream.handler),
            sleep=fake_sleep,
            clock=self.clock,
        )

    async def asyncTearDown(self) -> None:
        await self.client.aclose()

    async def test_rate_limited_request_is_retried_with_backoff(self) -> None:
        self.upstream.script(
            "GET",
            "/users",
            httpx.Response(429),
            httpx.Response(429),
            httpx.Response(200, json=[{"id": 1, "email": "A@X.io"}]),
        )

        with self.assertLogs("workforce_summary.time_tracking", level="WARNING"):
            users = await self.client.list_workspace_users()

        self.assertEqual(users, [{"id": 1, "email": "A@X.io"}])
        self.assertEqual(self.upstream.count("/users"), 3)
        self.assertEqual([delay for delay in self.sleeps if delay >= 3], [3.0, 6.0])
        self.assertEqual(self.upstream.requests[0].url.path, "/api/v9/workspaces/42/users")
        self.assertTrue(self.upstream.requests[0].headers["Authorization"].startswith("Basic "))

    async def test_rate_limit_exhausts_retries(self) -> None:
        self.upstream.script("GET", "/users", httpx.Response(429))

        with self.assertLogs("workforce_summary.time_tracking", level="WARNING"):
            with self.assertRaises(RateLimitedError):
                await self.client.list_workspace_users()

        self.assertEqual(self.upstream.count("/users"), 3)

    async def test_network_errors_are_retried(self) -> None:
        self.upstream.script(
            "GET",
            "/projects",
            httpx.ConnectError("connection refused"),
            httpx.Response(200, json=PROJECTS),
        )

        with self.assertLogs("workforce_summary.time_tracking", level="WARNING"):
            projects = await self.client.list_projects()

        self.assertEqual(len(projects), 2)

    async def test_calls_are_spaced_by_min_interval(self) -> None:
        self.upstream.script("GET", "/clients", httpx.Response(200, json=CLIENTS))

        await self.client.list_clients()
        await self.client.list_clients()

        self.assertEqual(len(self.sleeps), 1)
        self.assertAlmostEqual(self.sleeps[0], 1.1)

    async def test_quota_exhaustion_is_not_retried(self) -> None:
        self.upstream.script("GET", "/users", httpx.Response(402, json={"message": "quota reached"}))

        with self.assertRaises(QuotaExhaustedError) as ctx:
            await self.client.list_workspace_users()

        self.assertIn("quota reached", ctx.exception.message)
        self.assertEqual(self.upstream.count("/users"), 1)
        self.assertFalse(self.client.breaker.is_open)

    async def test_other_errors_raise_upstream_error(self) -> None:
        self.upstream.script("GET", "/users", httpx.Response(500, text="boom"))

        with self.assertRaises(UpstreamError) as ctx:
            await self.client.list_workspace_users()

        self.assertEqual(ctx.exception.upstream_status, 500)

    async def test_summary_request_body(self) -> None:
        self.upstream.script("POST", "/summary/time_entries", httpx.Response(200, json=SUMMARY))

        await self.client.fetch_summary_report(2024, 2)

        body = json.loads(self.upstream.requests[0].content)
        self.assertEqual(body["start_date"], "2024-02-01")
        self.assertEqual(body["end_date"], "2024-02-29")
        self.assertEqual(body["grouping"], "users")


class TimeTrackingServiceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.upstream = Upstream()
        self.upstream.script("GET", "/projects", httpx.Response(200, json=PROJECTS))
        self.upstream.script("GET", "/clients", httpx.Response(200, json=CLIENTS))
        self.upstream.script(
            "GET",
            "/users",
            httpx.Response(200, json=[{"id": 1, "email": " Ada@Example.com ", "fullname": "Ada"}]),
        )
        self.clock = FakeClock()

        async def fake_sleep(seconds: float) -> None:
            self.clock.now += seconds

        settings = _settings()
        self.client = TimeTrackingClient(
            settings,
            transport=httpx.MockTransport(self.upstream.handler),
            sleep=fake_sleep,
            clock=self.clock,
        )
        self.service = TimeTrackingService(
            self.client,
            settings=settings,
            clock=self.clock,
            today=lambda: date(2025, 3, 14),
        )

    async def asyncTearDown(self) -> None:
        await self.service.aclose()

    async def test_hours_by_month(self) -> None:
        self.upstream.script("POST", "/summary/time_entries", httpx.Response(200, json=SUMMARY))

        hours = await self.service.get_hours_by_month(2025, 2)

        self.assertEqual(hours[1].total_hours, 2.5)
        self.assertEqual(hours[1].billable_hours, 1.25)
        self.assertEqual(hours[1].non_billable_hours, 1.25)
        self.assertEqual(hours[1].projects, "Alpha")
        self.assertEqual(hours[1].clients, "ACME")
        self.assertEqual(hours[2].total_hours, 1.0)
        self.assertEqual(hours[2].billable_hours, 0.0)
        self.assertIsNone(hours[2].clients)
        self.assertIsNotNone(self.service.last_refresh)

    async def test_users_are_normalised(self) -> None:
        users = await self.service.get_users()

        self.assertEqual(users[0].email, "ada@example.com")
        self.assertEqual(users[0].full_name, "Ada")

    async def test_quota_exhaustion_opens_circuit(self) -> None:
        self.upstream.script("POST", "/summary/time_entries", httpx.Response(402, json={"message": "quota"}))

        with self.assertLogs("workforce_summary.circuit", level="ERROR"):
            with self.assertRaises(QuotaExhaustedError):
                await self.service.get_monthly_summary(2025, 1)
        requests_after_trip = len(self.upstream.requests)

        with self.assertRaises(CircuitOpenError) as ctx:
            await self.service.get_monthly_summary(2025, 2)

        self.assertEqual(len(self.upstream.requests), requests_after_trip)
        self.assertGreater(ctx.exception.retry_after_seconds, 0)

    async def test_stale_summary_served_while_circuit_open(self) -> None:
        self.upstream.script(
            "POST",
            "/summary/time_entries",
            httpx.Response(200, json=SUMMARY),
            httpx.Response(402, json={"message": "quota"}),
        )

        first = await self.service.get_monthly_summary(2025, 3)
        self.clock.now += 301

        with self.assertLogs("workforce_summary.cache", level="WARNING") as captured:
            second = await self.service.get_monthly_summary(2025, 3)

        self.assertEqual(first, second)
        self.assertTrue(self.client.breaker.is_open)
        self.assertTrue(any("cache_stale_fallback" in line for line in captured.output))

    async def test_project_breakdown_rows_per_project(self) -> None:
        self.upstream.script("POST", "/summary/time_entries", httpx.Response(200, json=SUMMARY))

        rows = await self.service.get_project_breakdown(2025, 2)
        again = await self.service.get_project_breakdown(2025, 2)

        self.assertEqual(rows, again)
        self.assertEqual(self.upstream.count("/summary/time_entries"), 1)
        self.assertEqual(
            [(row.user_id, row.project_name, row.client_name) for row in rows],
            [(1, "Alpha", "ACME"), (1, "Project 11", "No Client"), (2, "Internal", "No Client")],
        )
        self.assertEqual(rows[0].user_email, "ada@example.com")
        self.assertEqual(rows[0].total_hours, 2.0)
        self.assertEqual(rows[0].billable_hours, 1.0)
        self.assertEqual(rows[1].non_billable_hours, 0.25)
        self.assertEqual(rows[2].user_name, "User 2")
        self.assertIsNone(rows[2].user_email)
        self.assertEqual((rows[2].year, rows[2].month), (2025, 2))

    async def test_current_month_follows_configured_timezone(self) -> None:
        self.upstream.script("POST", "/summary/time_entries", httpx.Response(200, json=SUMMARY))
        settings = _settings(default_timezone="America/New_York")

        with patch("workforce_summary.services.time_tracking.local_today", return_value=date(2025, 3, 14)) as today:
            service = TimeTrackingService(self.client, settings=settings, clock=self.clock)
            await service.get_hours_by_month(2025, 3)
            self.clock.now += settings.month_cache_ttl_seconds
            await service.get_hours_by_month(2025, 3)

        today.assert_called_with("America/New_York")
        self.assertEqual(self.upstream.count("/summary/time_entries"), 2)

    async def test_disabled_service_returns_empty_results(self) -> None:
        service = TimeTrackingService(None, settings=Settings())

        self.assertFalse(service.enabled)
        self.assertEqual(await service.get_users(), [])
        self.assertEqual(await service.get_hours_by_month(2025, 3), {})
        self.assertEqual(await service.get_project_breakdown(2025, 3), [])


class TimeTrackingParsingTests(unittest.TestCase):
    def test_parse_users_falls_back_for_name(self) -> None:
        users = parse_workspace_users([{"id": "7", "email": None}])

        self.assertEqual(users[0].id, 7)
        self.assertEqual(users[0].email, "")
        self.assertEqual(users[0].full_name, "User 7")

    def test_parse_project_breakdown_without_project(self) -> None:
        payload = {"groups": [{"id": 3, "sub_groups": [{"id": None, "seconds": 5400, "billable_seconds": 5400}]}]}

        [row] = parse_project_breakdown(payload, year=2025, month=1, users=[], projects={}, clients={})

        self.assertIsNone(row.project_id)
        self.assertEqual(row.project_name, "No Project")
        self.assertEqual(row.client_name, "No Client")
        self.assertEqual(row.user_name, "User 3")
        self.assertEqual(row.total_hours, 1.5)
        self.assertEqual(row.non_billable_hours, 0.0)

    def test_configuration_requires_token_and_workspace(self) -> None:
        self.assertTrue(is_time_tracking_configured(_settings()))
        self.assertFalse(is_time_tracking_configured(_settings(time_tracking_workspace_id=" ")))


if __name__ == "__main__":
    unittest.main()
