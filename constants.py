import logging
import os

logger = logging.getLogger(__name__)


def get_int_config(key):
    """
    Read an integer from the environment. Missing or invalid values return None
    """
    value = os.environ.get(key)
    if value is None or not value.strip():
        return None
    try:
        return int(value, 10)
    except ValueError:
        logger.error(f"Invalid integer config value provided for {key}: {value}")
        return None


def get_positive_int_config(key, default=None):
    """
    Like get_int_config, but zero and negative values fall back to the default
    """
    value = get_int_config(key)
    if value is None or value < 1:
        return default
    return value


CC_HOME_PATH = os.getcwd()

OUTPUT_PATH = os.environ.get("CC_OUTPUT_DIR") or os.path.join(CC_HOME_PATH, "data")
LOG_PATH = os.environ.get("CC_LOG_PATH") or os.path.join(OUTPUT_PATH, "crawler.log")
INDEX_FILENAME = "index.json"


# Scraper options
CONCURRENCY = get_positive_int_config("CONCURRENCY", 2)  # Num of concurrent fetch tasks
REQUEST_DELAY_MS = get_int_config("REQUEST_DELAY_MS")  # Base delay before each course request
if REQUEST_DELAY_MS is None or REQUEST_DELAY_MS < 0:
    REQUEST_DELAY_MS = 500
COURSES_PER_SUBJECT = get_positive_int_config("COURSES_PER_SUBJECT")  # None = all courses
SPECIFIED_TERMS = os.environ.get("SPECIFIED_TERMS")  # ex: "2025/fall,2026/spring"
NUM_TERMS = get_positive_int_config("NUM_TERMS", 2)

SUBJECT_DELAY_MS = 1000  # Politeness delay between subject list requests
JITTER_FRACTION = 0.3  # +/- 30%
MIN_DELAY_MS = 100

MAX_403_ERRORS = 1  # Abort on first 403 and save progress
RATE_LIMIT_WARN_COUNT = 5  # Advise operator once 429s exceed this

PROGRESS_INTERVAL_TEST = 10  # Used when COURSES_PER_SUBJECT is set
PROGRESS_INTERVAL_FULL = 50
SUBJECT_PROGRESS_INTERVAL = 20


# Requester options
BASE_URL = "https://courses.illinois.edu/cisapp/explorer/schedule"
USER_AGENT_S = "Mozilla/5.0 (X11; Linux x86_64; rv:109.0) Gecko/20100101 Firefox/111.0"
static_timeout = 30  # Seconds


# Terms
TERM_ORDER = ("spring", "summer", "fall", "winter")
TERM_CODES = {
    "spring": "02",
    "summer": "05",
    "fall": "08",
    "winter": "12",
}
