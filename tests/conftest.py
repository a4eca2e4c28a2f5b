import asyncio

import pytest

import cc_scraper
from cc_client import CourseRef, FetchError

real_sleep = asyncio.sleep


class FakeClient:
    """
    In-memory stand-in for CourseExplorerClient.

    detail_errors maps "SUBJ NUM" to an HTTP status or an exception instance.
    """

    def __init__(
        self,
        courses_by_subject,
        detail_errors=None,
        fail_discovery_for=(),
        fetch_time=0,
    ):
        self.courses_by_subject = courses_by_subject
        self.detail_errors = detail_errors or {}
        self.fail_discovery_for = fail_discovery_for
        self.fetch_time = fetch_time
        self.started = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.closed = True

    async def fetch_subjects(self, year, term):
        if (year, term) in self.fail_discovery_for:
            raise FetchError(500, f"/{year}/{term}.xml", "Internal Server Error")
        return list(self.courses_by_subject)

    async def fetch_course_list(self, year, term, subject):
        return [CourseRef(subject, num) for num in self.courses_by_subject[subject]]

    async def fetch_course_detail(self, year, term, subject, number):
        key = f"{subject} {number}"
        self.started.append(key)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await real_sleep(self.fetch_time)
            error = self.detail_errors.get(key)
            if isinstance(error, int):
                raise FetchError(error, f"/{year}/{term}/{subject}/{number}.xml")
            if error is not None:
                raise error
            return {
                "subject": subject,
                "number": number,
                "label": f"{subject} {number} label",
                "description": None,
                "credit_hours": "3 hours.",
                "sections": [
                    {
                        "crn": f"{subject}{number}",
                        "section_number": "AL1",
                        "schedule_type": "Lecture",
                        "start": "09:00 AM",
                        "end": "09:50 AM",
                        "days": "MWF",
                        "building": "Siebel Center",
                        "room": "1404",
                    }
                ],
            }
        finally:
            self.in_flight -= 1


def make_courses(subject, count):
    return {subject: [str(100 + i) for i in range(count)]}


@pytest.fixture
def no_delay(monkeypatch):
    """
    Make the pacing delay instant. Records the requested base delays
    """
    calls = []

    async def fake_delay_for(base_ms, jitter_fraction=0.3):
        calls.append(base_ms)
        await real_sleep(0)
        return 0

    monkeypatch.setattr(cc_scraper, "delay_for", fake_delay_for)
    return calls
