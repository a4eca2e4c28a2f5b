# Description: Term selection and term code / name helpers


import logging
from collections import namedtuple
from datetime import date

import constants

logger = logging.getLogger(__name__)


Term = namedtuple("Term", ["year", "term"])


class InvalidTerm(ValueError):
    """
    A term name outside of spring, summer, fall and winter
    """


def current_term(month):
    """
    Map a calendar month (1-12) to the term in session
    """
    if month <= 1:
        return "winter"  # Jan is the tail of the winter term
    elif month <= 5:
        return "spring"
    elif month <= 8:
        return "summer"
    return "fall"


def plan_terms(explicit=None, count=constants.NUM_TERMS, today=None):
    """
    Return the terms to scrape, most recent first.
    Explicit terms are used as-is. Otherwise walk backwards through the term cycle
    starting at the current term.
    """
    if explicit is not None:
        return explicit

    today = today or date.today()
    term_index = constants.TERM_ORDER.index(current_term(today.month))
    year = today.year

    terms = []
    for _ in range(count):
        terms.append(Term(str(year), constants.TERM_ORDER[term_index]))

        # Stepping back from spring lands on the previous year's winter
        term_index -= 1
        if term_index < 0:
            term_index = len(constants.TERM_ORDER) - 1
            year -= 1

    return terms


def parse_specified_terms(value):
    """
    Parse "2025/fall,2026/spring" into Terms. Empty input returns None
    """
    if not value or not value.strip():
        return None

    terms = []
    for term_s in value.split(","):
        term_s = term_s.strip()
        if not term_s:
            continue
        try:
            year, term = term_s.split("/")
        except ValueError:
            raise InvalidTerm(f"Invalid term: {term_s}") from None

        year, term = year.strip(), term.strip().lower()
        if term not in constants.TERM_CODES or not year.isdigit():
            raise InvalidTerm(f"Invalid term: {term_s}")
        terms.append(Term(year, term))

    return terms or None


def term_code(year, term):
    """
    Numeric term code. ex: ("2025", "fall") -> "202508"
    """
    code = constants.TERM_CODES.get(term.lower())
    if not code:
        raise InvalidTerm(f"Invalid term: {term}")
    return f"{year}{code}"


def term_name(year, term):
    """
    Human readable term name. Winter spans two years: "Winter 2025-2026"
    """
    term = term.lower()
    if term not in constants.TERM_CODES:
        raise InvalidTerm(f"Invalid term: {term}")

    if term == "winter":
        return f"Winter {int(year) - 1}-{year}"
    return f"{term.title()} {year}"
