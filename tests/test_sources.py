from datetime import date, datetime, timezone
import unittest

from workforce_summary.models import AbsenceStatus, TimespanType
from workforce_summary.sources import (
    normalize_absence,
    normalize_employee,
    normalize_holidays,
    normalize_location,
    normalize_reason,
    normalize_team,
    normalize_timespan,
    parse_date_part,
)


class NormalizerTests(unittest.TestCase):
    def test_parse_date_part_ignores_offset(self) -> None:
        self.assertEqual(parse_date_part("2025-01-01T00:00:00.000Z"), date(2025, 1, 1))
        self.assertEqual(parse_date_part("2024-12-31T23:00:00+01:00"), date(2024, 12, 31))
        self.assertIsNone(parse_date_part("garbage"))
        self.assertIsNone(parse_date_part(None))

    def test_employee_with_nested_schedule_days(self) -> None:
        employee = normalize_employee(
            {
                "_id": "u1",
                "firstName": "Ada",
                "lastName": "Lovelace",
                "email": "Ada@Example.com",
                "weeklyHours": 38.5,
                "employmentStartDate": "2024-05-01T00:00:00.000Z",
                "locationId": "loc1",
                "teamIds": ["t1", None],
                "schedules": [
                    {
                        "start": "2024-05-01T00:00:00.000Z",
                        "scheduleType": "weekly",
                        "days": [
                            {
                                "1": {"active": True, "shift": [{"start": "08:00", "end": "16:00"}]},
                                "0": {"active": False},
                                "weekend": {"active": True},
                            }
                        ],
                    }
                ],
            }
        )

        self.assertEqual(employee.id, "u1")
        self.assertEqual(employee.full_name, "Ada Lovelace")
        self.assertTrue(employee.active)
        self.assertEqual(employee.weekly_hours, 38.5)
        self.assertEqual(employee.employment_start_date, date(2024, 5, 1))
        self.assertIsNone(employee.employment_end_date)
        self.assertEqual(employee.team_ids, ("t1",))
        schedule = employee.schedules[0]
        self.assertEqual(sorted(schedule.days), [0, 1])
        self.assertTrue(schedule.days[1].active)
        self.assertEqual(schedule.days[1].shifts[0].end, "16:00")
        self.assertEqual(schedule.schedule_type, "weekly")

    def test_inactive_employee_flag(self) -> None:
        self.assertFalse(normalize_employee({"_id": "u2", "active": False}).active)

    def test_holidays_expand_dates(self) -> None:
        occurrences = normalize_holidays(
            [
                {
                    "_id": "h1",
                    "name": "Neujahr",
                    "dates": ["2025-01-01T00:00:00.000Z", "2026-01-01T00:00:00.000Z", None],
                    "locationIds": ["loc1"],
                }
            ]
        )

        self.assertEqual([item.date for item in occurrences], [date(2025, 1, 1), date(2026, 1, 1)])
        self.assertEqual(occurrences[0].location_ids, ("loc1",))

    def test_location_and_team(self) -> None:
        location = normalize_location({"_id": "loc1", "name": "Berlin", "timezone": "Europe/Berlin", "holidayIds": ["h1"]})
        team = normalize_team({"_id": "t1", "name": "Ops", "memberIds": ["u1", "u2"]})

        self.assertEqual(location.holiday_ids, ("h1",))
        self.assertEqual(team.member_ids, ("u1", "u2"))

    def test_absence_status_and_days(self) -> None:
        record = normalize_absence(
            {
                "_id": "a1",
                "assignedToId": "u1",
                "reasonId": "r1",
                "status": "confirmedByApprover",
                "start": "2025-03-12T00:00:00.000Z",
                "end": "2025-03-13T00:00:00.000Z",
                "days": [
                    {"date": "2025-03-12T00:00:00.000Z", "value": 0.5},
                    {"date": "2025-03-13T00:00:00.000Z"},
                    {"value": 1},
                ],
                "daysCount": 1.5,
            }
        )

        self.assertEqual(record.status, AbsenceStatus.CONFIRMED)
        self.assertTrue(record.is_approved)
        self.assertEqual([day.value for day in record.days], [0.5, 1.0])
        self.assertEqual(record.days_count, 1.5)

    def test_numeric_status(self) -> None:
        self.assertTrue(normalize_absence({"_id": "a", "assignedToId": "u", "status": 2}).is_approved)
        self.assertFalse(normalize_absence({"_id": "a", "assignedToId": "u", "status": 0}).is_approved)

    def test_reason_flags(self) -> None:
        reason = normalize_reason({"_id": "r1", "name": "Urlaub", "countsAsWork": False, "reducesDays": True})

        self.assertFalse(reason.counts_as_work)
        self.assertTrue(reason.reduces_days)
        self.assertFalse(hasattr(reason, "active"))
        self.assertTrue(normalize_reason({"_id": "r2", "name": "Dienstreise"}).counts_as_work)

    def test_timespan_types(self) -> None:
        work = normalize_timespan({"userId": "u1", "start": "2025-03-03T08:00:00Z", "end": "2025-03-03T16:00:00Z", "type": "work"})
        other = normalize_timespan({"userId": "u1", "start": "2025-03-03T08:00:00Z", "end": "2025-03-03T16:00:00Z", "type": "sick"})

        self.assertEqual(work.type, TimespanType.WORK)
        self.assertEqual(work.start, datetime(2025, 3, 3, 8, 0, tzinfo=timezone.utc))
        self.assertEqual(other.type, TimespanType.OTHER)
        self.assertIsNone(normalize_timespan({"userId": "u1", "start": None, "end": "2025-03-03T16:00:00Z"}))


if __name__ == "__main__":
    unittest.main()
