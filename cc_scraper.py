# Description: Scrape the course catalog one term at a time and write the term datasets

# Version: 1.0


import asyncio
import logging
import os
import random
import sys
import time
from datetime import datetime

import enlighten

import constants
from cc_client import CourseExplorerClient, FetchError, course_key
from cc_terms import parse_specified_terms, plan_terms, term_code, term_name
from cc_writer import DataWriter


startTime = datetime.now()


# Outcome statuses
SUCCESS = "success"
RATE_LIMITED = "rate_limited"  # HTTP 429
BLOCKED = "blocked"  # HTTP 403
FAILED = "failed"
SKIPPED = "skipped"  # Not requested because the session was aborted


class ScrapeOutcome:
    """
    The result of one course request
    """

    def __init__(self, course, status, data=None, message=None):
        self.course = course
        self.status = status
        self.data = data
        self.message = message

    def __repr__(self):
        return f"ScrapeOutcome({course_key(self.course)!r}, {self.status!r})"

    @property
    def success(self):
        return self.status == SUCCESS


class ScrapeSession:
    """
    Request counters and the abort flag for a single term.

    A new session is created for every term so nothing carries over between terms.
    All the workers share one session. They only run on the event loop thread,
    so each counter update happens without interruption.
    """

    def __init__(
        self,
        max_blocks=constants.MAX_403_ERRORS,
        rate_limit_warn=constants.RATE_LIMIT_WARN_COUNT,
    ):
        self.max_blocks = max_blocks
        self.rate_limit_warn = rate_limit_warn
        self.total_requests = 0
        self.rate_limit_count = 0
        self.hard_block_count = 0
        self.aborted = False
        self.rate_limit_warning = False

    def should_dispatch(self):
        """
        Return True if new requests may start
        """
        return not self.aborted

    def record_blocked(self, course):
        """
        The server returned 403 Forbidden. The scraper has been identified.
        Stop starting new requests once the threshold is reached.
        """
        self.hard_block_count += 1
        logger.error(f"403 Forbidden on {course_key(course)}")
        if self.hard_block_count >= self.max_blocks and not self.aborted:
            logger.error(f"ABORTING: server blocked request. Stopping scraper...")
            self.aborted = True

    def record_rate_limited(self, course):
        """
        The server returned 429 Too Many Requests. Keep going but warn the operator if it recurs.
        """
        self.rate_limit_count += 1
        logger.warning(f"Rate limited on {course_key(course)}")

        if self.rate_limit_count > self.rate_limit_warn:
            self.rate_limit_warning = True
            logger.warning(
                f"EXCESSIVE RATE LIMITING! ({self.rate_limit_count} times) "
                f"Consider stopping and reducing CONCURRENCY or increasing REQUEST_DELAY_MS"
            )

    def classify(self, course, errex):
        """
        Turn a failed request into an outcome and update the counters
        """
        status = errex.status if isinstance(errex, FetchError) else None

        if status == 403:
            self.record_blocked(course)
            return ScrapeOutcome(course, BLOCKED, message=str(errex))

        if status == 429:
            self.record_rate_limited(course)
            outcome = ScrapeOutcome(course, RATE_LIMITED, message=str(errex))
        else:
            outcome = ScrapeOutcome(course, FAILED, message=f"{errex!r}")

        # Don't spam errors if we're aborting
        if not self.aborted:
            logger.warning(f"Failed to scrape {course_key(course)}: {outcome.message}")
        return outcome


def jitter_delay(base_ms, jitter_fraction=constants.JITTER_FRACTION):
    """
    Randomize a delay so requests are less predictable. Never below MIN_DELAY_MS
    """
    jitter = base_ms * jitter_fraction * random.uniform(-1, 1)
    return max(constants.MIN_DELAY_MS, base_ms + jitter)


async def delay_for(base_ms, jitter_fraction=constants.JITTER_FRACTION):
    """
    Sleep for a jittered delay. Return the milliseconds waited
    """
    delay_ms = jitter_delay(base_ms, jitter_fraction)
    await asyncio.sleep(delay_ms / 1000)
    return delay_ms


async def discover_courses(
    client,
    year,
    term,
    per_subject_cap=constants.COURSES_PER_SUBJECT,
    subject_delay_ms=constants.SUBJECT_DELAY_MS,
):
    """
    Get all the subjects, then the courses of each subject.
    Subjects are requested one at a time with a pause between each.
    """
    logger.info(f"Step 1: Discovering subjects...")
    subjects = await client.fetch_subjects(year, term)
    if not subjects:
        logger.warning(f"No subjects found for {term} {year}, skipping...")
        return []

    logger.info(f"Step 2: Discovering courses...")
    all_courses = []
    for subject_num, subject in enumerate(subjects, start=1):
        courses = await client.fetch_course_list(year, term, subject)

        if per_subject_cap is not None and courses:
            all_courses.extend(courses[:per_subject_cap])
            logger.debug(
                f"Found {len(courses)} courses in {subject}, taking first {min(len(courses), per_subject_cap)}"
            )
        else:
            all_courses.extend(courses)
            logger.debug(f"Found {len(courses)} courses in {subject}")

        if (
            subject_num % constants.SUBJECT_PROGRESS_INTERVAL == 0
            or subject_num == len(subjects)
        ):
            logger.info(
                f"Progress: {subject_num}/{len(subjects)} subjects ({len(all_courses)} courses found)"
            )

        await delay_for(subject_delay_ms)

    logger.info(f"Total courses discovered: {len(all_courses)}")
    if per_subject_cap is not None:
        logger.info(f"COURSES_PER_SUBJECT mode: {per_subject_cap} courses per subject")
    if not all_courses:
        logger.warning(f"No courses found for {term} {year}, skipping...")

    return all_courses


async def scrape_with_delay(client, session, year, term, course, delay_ms):
    """
    Request one course after the pacing delay.
    Errors are converted to outcomes and never raised.
    """
    if not session.should_dispatch():
        return ScrapeOutcome(course, SKIPPED)

    await delay_for(delay_ms)

    # The session may have been aborted during the delay
    if not session.should_dispatch():
        return ScrapeOutcome(course, SKIPPED)

    session.total_requests += 1
    try:
        data = await client.fetch_course_detail(
            year, term, course.subject, course.number
        )
    except Exception as errex:
        return session.classify(course, errex)

    return ScrapeOutcome(course, SUCCESS, data)


async def run_pool(
    client,
    session,
    year,
    term,
    course_refs,
    concurrency=constants.CONCURRENCY,
    base_delay_ms=constants.REQUEST_DELAY_MS,
    on_result=None,
):
    """
    Request every course with at most `concurrency` requests in flight.
    Each worker takes the next course as soon as it finishes one.
    Outcomes are returned, and passed to on_result, in completion order.
    """
    course_q = asyncio.Queue()
    for course in course_refs:
        course_q.put_nowait(course)

    outcomes = []

    async def req_looper():
        """
        The request loop. Runs until the queue is empty
        """
        while True:
            try:
                course = course_q.get_nowait()
            except asyncio.QueueEmpty:
                return

            outcome = await scrape_with_delay(
                client, session, year, term, course, base_delay_ms
            )
            outcomes.append(outcome)
            if on_result is not None:
                on_result(outcome)

    num_tasks = max(1, min(concurrency, len(course_refs)))
    logger.debug(f"Starting {num_tasks} request tasks")
    tasks = [
        asyncio.create_task(req_looper(), name=f"req_looper-{i}")
        for i in range(num_tasks)
    ]
    await asyncio.gather(*tasks)

    return outcomes


class ResultAggregator:
    """
    Collect successful courses into the term dataset and log progress
    """

    def __init__(self, writer, total, session=None, progress_interval=50, progress_bar=None):
        self.writer = writer
        self.total = total
        self.session = session
        self.progress_interval = progress_interval
        self.progress_bar = progress_bar
        self.courses = {}
        self.success_count = 0
        self.failure_count = 0
        self.completed = 0
        self.start_ts = time.monotonic()

    def add(self, outcome):
        self.completed += 1

        if outcome.success and outcome.data is not None:
            try:
                self.courses[course_key(outcome.course)] = self.writer.convert_course(
                    outcome.data
                )
                self.success_count += 1
            except Exception:
                logger.exception(f"Cant convert course: {course_key(outcome.course)}")
                self.failure_count += 1
        else:
            self.failure_count += 1

        if self.progress_bar is not None:
            self.progress_bar.update()

        if self.completed % self.progress_interval == 0 or self.completed == self.total:
            self.log_progress()

    def get_rate(self):
        """
        Completions per second
        """
        elapsed = time.monotonic() - self.start_ts
        if elapsed <= 0:
            return 0.0
        return self.completed / elapsed

    def get_eta(self, rate=None):
        """
        Seconds left at the current rate
        """
        rate = self.get_rate() if rate is None else rate
        remaining = self.total - self.completed
        if remaining <= 0 or rate <= 0:
            return 0
        return round(remaining / rate)

    def log_progress(self):
        rate = self.get_rate()
        rate_limits = self.session.rate_limit_count if self.session else 0
        logger.info(
            f"Progress: {self.completed}/{self.total} ({rate:.1f}/s, ETA: {self.get_eta(rate)}s, Rate limits: {rate_limits})"
        )

    def finalize(self):
        return self.writer.generate_term_data(self.courses)


def create_progress_bar(manager, total, desc):
    if manager is None:
        return None
    return manager.counter(total=total, desc=desc, unit="courses", leave=False)


async def scrape_term(
    client,
    year,
    term,
    out_dir=constants.OUTPUT_PATH,
    concurrency=constants.CONCURRENCY,
    delay_ms=constants.REQUEST_DELAY_MS,
    per_subject_cap=constants.COURSES_PER_SUBJECT,
    manager=None,
):
    """
    Discover and scrape every course of one term, then write the term dataset.
    Return (index entry or None, aborted).
    """
    code = term_code(year, term)
    name = term_name(year, term)
    logger.info(f"  Processing {name.upper()}  ".center(60, "="))

    courses = await discover_courses(client, year, term, per_subject_cap)
    if not courses:
        return None, False

    logger.info(f"Step 3: Scraping courses in parallel...")
    session = ScrapeSession()
    writer = DataWriter()
    progress_interval = (
        constants.PROGRESS_INTERVAL_TEST
        if per_subject_cap is not None
        else constants.PROGRESS_INTERVAL_FULL
    )
    progress_bar = create_progress_bar(manager, len(courses), code)
    aggregator = ResultAggregator(
        writer, len(courses), session, progress_interval, progress_bar
    )

    try:
        await run_pool(
            client,
            session,
            year,
            term,
            courses,
            concurrency,
            delay_ms,
            on_result=aggregator.add,
        )
    finally:
        if progress_bar is not None:
            progress_bar.close()

    entry = {"term": code, "name": name}

    if session.aborted:
        logger.error(f"Scraping aborted due to 403 Forbidden error")
        logger.error(f"Successfully scraped this run: {aggregator.success_count} courses")
        logger.error(f"Failed/Skipped: {aggregator.failure_count} courses")

        if aggregator.success_count == 0:
            logger.error(f"No courses scraped, no data written.")
            return None, True

        # Partial output is better than none
        logger.info(f"Step 4: Writing partial data before exit...")
        try:
            writer.write_term_data(aggregator.finalize(), code, out_dir)
        except Exception:
            # The abort must still reach the caller
            logger.exception(f"Cant write partial data for {name}")
            return None, True
        logger.info(f"Data saved! Run scraper again to repeat {name}.")
        return entry, True

    logger.info(f"Step 4: Building term data...")
    term_data = aggregator.finalize()
    logger.info(f"Total courses: {len(term_data['courses'])}")
    logger.info(f"Success: {aggregator.success_count}, Failed: {aggregator.failure_count}")
    logger.info(f"Requests: {session.total_requests}, Rate limits: {session.rate_limit_count}")
    for cache_name, cache in term_data["caches"].items():
        logger.info(f"Cached {cache_name}: {len(cache)}")

    writer.write_term_data(term_data, code, out_dir)
    elapsed = time.monotonic() - aggregator.start_ts
    logger.info(f"{name} complete in {elapsed:.1f}s!")
    return entry, False


async def run_terms(
    client,
    terms,
    out_dir=constants.OUTPUT_PATH,
    concurrency=constants.CONCURRENCY,
    delay_ms=constants.REQUEST_DELAY_MS,
    per_subject_cap=constants.COURSES_PER_SUBJECT,
    manager=None,
):
    """
    Scrape the terms in order and write the index.
    Return the exit status: 1 if a term was aborted, or if a term failed and no
    dataset was written. Otherwise 0.
    """
    if not terms:
        logger.error(f"No terms to scrape")
        return 0

    logger.info(f"Terms to scrape:")
    for year, term in terms:
        logger.info(f"  - {term_name(year, term)} ({year}/{term})")

    index_entries = []
    aborted = False
    term_failed = False

    for year, term in terms:
        try:
            entry, aborted = await scrape_term(
                client,
                year,
                term,
                out_dir,
                concurrency,
                delay_ms,
                per_subject_cap,
                manager,
            )
        except Exception:
            # A failed term should not stop the other terms
            logger.exception(f"Failed to process {term} {year}")
            term_failed = True
            continue

        if entry is not None:
            index_entries.append(entry)
        if aborted:
            break

    if index_entries:
        DataWriter().write_index(index_entries, out_dir)
        for entry in index_entries:
            logger.info(f"  - {entry['term']}.json ({entry['name']})")

    if aborted:
        return 1
    if term_failed and not index_entries:
        logger.error(f"No term datasets were written")
        return 1
    return 0


async def main():
    """
    Plan the terms, open the HTTP session, and scrape
    """
    logger.info(f"Course crawler - bulk scraping mode")
    logger.info(f"{constants.CONCURRENCY=}")
    logger.info(f"{constants.REQUEST_DELAY_MS=}")
    if constants.COURSES_PER_SUBJECT is not None:
        logger.info(f"{constants.COURSES_PER_SUBJECT=} (testing mode)")
    else:
        logger.info(f"COURSE_LIMIT: NONE (full scrape)")
    logger.info(f"{constants.OUTPUT_PATH=}")

    terms = plan_terms(
        parse_specified_terms(constants.SPECIFIED_TERMS), constants.NUM_TERMS
    )

    manager = enlighten.get_manager()
    try:
        async with CourseExplorerClient() as client:
            status = await run_terms(
                client,
                terms,
                constants.OUTPUT_PATH,
                constants.CONCURRENCY,
                constants.REQUEST_DELAY_MS,
                constants.COURSES_PER_SUBJECT,
                manager,
            )
    finally:
        manager.stop()

    logger.info(f"  Crawl complete  ".center(60, "="))
    return status


def make_dirs():
    """
    Create the folders for writing files
    """
    for dir_path in (constants.OUTPUT_PATH, os.path.dirname(constants.LOG_PATH)):
        if dir_path and not os.path.exists(dir_path):
            os.makedirs(dir_path)


def display_stats():
    """
    Stop the timer and display stats
    """
    duration = datetime.now() - startTime
    logger.info(f"Duration = {round(duration.seconds / 60)} minutes")


class ContextFilter(logging.Filter):
    """
    Append the asyncio task name, if available, to the log
    """

    def filter(self, record):
        try:
            task = asyncio.current_task()
        except RuntimeError:
            task = None
        record.task_id = f"- {task.get_name()}" if task else ""
        return True


logger = logging.getLogger(__name__)


def config_logger():
    """
    The logger has a file handler and console handler.
    The file handler logs everything (DEBUG).
    The console handler logs INFO.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    file_handler = logging.FileHandler(constants.LOG_PATH, mode="a")
    file_handler.setLevel(logging.DEBUG)
    file_format = logging.Formatter(
        "%(asctime)s - %(levelname)s - %(message)s %(task_id)s", datefmt="%H:%M:%S"
    )
    file_handler.setFormatter(file_format)
    file_handler.addFilter(ContextFilter())

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_format = logging.Formatter("%(levelname)s - %(message)s")
    console_handler.setFormatter(console_format)

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)


def run():
    """
    Entry point. Return the process exit status
    """
    make_dirs()
    config_logger()

    try:
        status = asyncio.run(main())
    except Exception:
        logger.exception(f"Fatal error")
        status = 1

    display_stats()
    return status


if __name__ == "__main__":
    sys.exit(run())
