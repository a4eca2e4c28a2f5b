# Description: Course Explorer requester. Subjects, course lists and course details


import logging
from collections import namedtuple

import aiohttp
from bs4 import BeautifulSoup

import constants

logger = logging.getLogger(__name__)


CourseRef = namedtuple("CourseRef", ["subject", "number"])


def course_key(course):
    """
    Key of a course in the term dataset. ex: "CS 124"
    """
    return f"{course.subject} {course.number}"


class FetchError(Exception):
    """
    A request that did not return HTTP 200. The status is used to classify the failure
    """

    def __init__(self, status, url, reason=""):
        self.status = status
        self.url = url
        self.reason = reason
        super().__init__(f"{status} {reason} {url}".strip())


class CourseExplorerClient:
    """
    The aiohttp requester for the Course Explorer XML API.

    One session is shared by all tasks for the whole run.
    Any response other than 200 raises FetchError.
    """

    def __init__(self, base_url=constants.BASE_URL, session=None):
        self.base_url = base_url.rstrip("/")
        self.session = session

    async def __aenter__(self):
        await self.create_session()
        return self

    async def __aexit__(self, *exc_info):
        await self.close_session()

    async def create_session(self):
        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=constants.static_timeout)
            self.session = aiohttp.ClientSession(
                timeout=timeout, headers={"User-Agent": constants.USER_AGENT_S}
            )

    async def close_session(self):
        if self.session is not None:
            await self.session.close()
            self.session = None

    async def request_url(self, url, params=None):
        """
        Get the response body. Raise FetchError on any non 200 status
        """
        logger.debug(f"begin req {url}")
        async with self.session.get(url, params=params) as resp:
            if resp.status != 200:
                raise FetchError(resp.status, url, resp.reason or "")
            text = await resp.text()
        logger.debug(f"end req {url}")
        return text

    async def fetch_subjects(self, year, term):
        """
        Return the subject codes offered in a term
        """
        text = await self.request_url(f"{self.base_url}/{year}/{term}.xml")
        return parse_subjects(text)

    async def fetch_course_list(self, year, term, subject):
        """
        Return the CourseRefs of a subject, in catalog order
        """
        text = await self.request_url(f"{self.base_url}/{year}/{term}/{subject}.xml")
        return parse_course_list(text, subject)

    async def fetch_course_detail(self, year, term, subject, number):
        """
        Return the raw course payload used by the writer
        """
        text = await self.request_url(
            f"{self.base_url}/{year}/{term}/{subject}/{number}.xml",
            params={"mode": "detail"},
        )
        return parse_course_detail(text, subject, number)


def make_soup(text):
    return BeautifulSoup(text, "html5lib")


def get_text(tag, name):
    """
    Stripped text of the first child tag, or None
    """
    child = tag.find(name)
    if child is None:
        return None
    return child.get_text(strip=True) or None


def parse_subjects(text):
    soup = make_soup(text)
    return [tag["id"] for tag in soup.find_all("subject") if tag.get("id")]


def parse_course_list(text, subject):
    soup = make_soup(text)
    return [
        CourseRef(subject, tag["id"]) for tag in soup.find_all("course") if tag.get("id")
    ]


def parse_course_detail(text, subject, number):
    """
    Pull the course fields and one entry per section meeting.
    html5lib lower cases the tag names
    """
    soup = make_soup(text)
    sections = []
    for section_tag in soup.find_all("detailedsection"):
        meetings = section_tag.find_all("meeting") or [section_tag]
        for meeting in meetings:
            type_tag = meeting.find("type")
            sections.append(
                {
                    "crn": section_tag.get("id"),
                    "section_number": get_text(section_tag, "sectionnumber"),
                    "schedule_type": type_tag.get_text(strip=True) if type_tag else None,
                    "start": get_text(meeting, "start"),
                    "end": get_text(meeting, "end"),
                    "days": get_text(meeting, "daysoftheweek"),
                    "building": get_text(meeting, "buildingname"),
                    "room": get_text(meeting, "roomnumber"),
                }
            )

    return {
        "subject": subject,
        "number": number,
        "label": get_text(soup, "label"),
        "description": get_text(soup, "description"),
        "credit_hours": get_text(soup, "credithours"),
        "sections": sections,
    }
