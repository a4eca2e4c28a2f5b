import asyncio
import json

from cc_scraper import run_terms, scrape_term
from cc_terms import Term
from cc_writer import DataWriter
from conftest import FakeClient, make_courses


def read_json(path):
    return json.loads(path.read_text())


def test_scrape_term_complete(tmp_path, no_delay):
    client = FakeClient({"CS": ["124", "128"], "MATH": ["221"]}, detail_errors={"CS 128": 500})

    entry, aborted = asyncio.run(
        scrape_term(client, "2025", "fall", str(tmp_path), concurrency=2, delay_ms=0, per_subject_cap=None)
    )

    assert entry == {"term": "202508", "name": "Fall 2025"}
    assert not aborted
    term_data = read_json(tmp_path / "202508.json")
    assert sorted(term_data["courses"]) == ["CS 124", "MATH 221"]
    assert term_data["caches"]["scheduleTypes"] == ["Lecture"]


def test_scrape_term_no_courses_skips(tmp_path, no_delay):
    client = FakeClient({"CS": []})

    entry, aborted = asyncio.run(scrape_term(client, "2025", "fall", str(tmp_path), 2, 0, None))

    assert entry is None
    assert not aborted
    assert list(tmp_path.iterdir()) == []


def test_scrape_term_abort_writes_partial(tmp_path, no_delay):
    client = FakeClient(make_courses("CS", 20), detail_errors={"CS 104": 403}, fetch_time=0.01)

    entry, aborted = asyncio.run(scrape_term(client, "2026", "winter", str(tmp_path), 3, 0, None))

    assert aborted
    assert entry == {"term": "202612", "name": "Winter 2025-2026"}
    courses = read_json(tmp_path / "202612.json")["courses"]
    assert len(courses) == len(client.started) - 1
    assert "CS 104" not in courses


def test_scrape_term_abort_with_nothing_scraped(tmp_path, no_delay):
    client = FakeClient(make_courses("CS", 5), detail_errors={"CS 100": 403})

    entry, aborted = asyncio.run(scrape_term(client, "2025", "fall", str(tmp_path), 1, 0, None))

    assert aborted
    assert entry is None
    assert not (tmp_path / "202508.json").exists()


def test_run_terms_writes_index(tmp_path, no_delay):
    client = FakeClient(make_courses("CS", 3))
    terms = [Term("2025", "fall"), Term("2025", "summer")]

    status = asyncio.run(run_terms(client, terms, str(tmp_path), 2, 0, None))

    assert status == 0
    assert read_json(tmp_path / "index.json") == {
        "terms": [
            {"term": "202508", "name": "Fall 2025"},
            {"term": "202505", "name": "Summer 2025"},
        ]
    }
    assert (tmp_path / "202505.json").exists()


def test_run_terms_discovery_failure_moves_on(tmp_path, no_delay):
    client = FakeClient(make_courses("CS", 2), fail_discovery_for=[("2025", "fall")])
    terms = [Term("2025", "fall"), Term("2025", "summer")]

    status = asyncio.run(run_terms(client, terms, str(tmp_path), 2, 0, None))

    assert status == 0
    assert not (tmp_path / "202508.json").exists()
    assert read_json(tmp_path / "index.json")["terms"] == [{"term": "202505", "name": "Summer 2025"}]


def test_run_terms_abort_stops_run(tmp_path, no_delay):
    client = FakeClient(make_courses("CS", 6), detail_errors={"CS 102": 403})
    terms = [Term("2025", "fall"), Term("2025", "summer")]

    status = asyncio.run(run_terms(client, terms, str(tmp_path), 1, 0, None))

    assert status == 1
    assert (tmp_path / "202508.json").exists()
    assert not (tmp_path / "202505.json").exists()
    assert read_json(tmp_path / "index.json")["terms"] == [{"term": "202508", "name": "Fall 2025"}]


def test_run_terms_nothing_to_do(tmp_path):
    assert asyncio.run(run_terms(FakeClient({}), [], str(tmp_path))) == 0
    assert not (tmp_path / "index.json").exists()


def test_run_terms_abort_survives_failed_partial_write(tmp_path, no_delay, monkeypatch):
    def disk_full(self, term_data, term_code, out_dir):
        raise OSError("disk full")

    monkeypatch.setattr(DataWriter, "write_term_data", disk_full)
    client = FakeClient(make_courses("CS", 4), detail_errors={"CS 102": 403})
    terms = [Term("2025", "fall"), Term("2025", "summer")]

    status = asyncio.run(run_terms(client, terms, str(tmp_path), 1, 0, None))

    assert status == 1
    # Nothing is requested for the next term after the block
    assert client.started == ["CS 100", "CS 101", "CS 102"]
    assert not (tmp_path / "index.json").exists()


def test_run_terms_every_term_fails(tmp_path, no_delay):
    client = FakeClient(
        make_courses("CS", 2),
        fail_discovery_for=[("2025", "fall"), ("2025", "summer")],
    )
    terms = [Term("2025", "fall"), Term("2025", "summer")]

    status = asyncio.run(run_terms(client, terms, str(tmp_path), 2, 0, None))

    assert status == 1
    assert list(tmp_path.iterdir()) == []


def test_run_terms_failed_write_is_term_error(tmp_path, no_delay, monkeypatch):
    real_write = DataWriter.write_term_data

    def fail_fall(self, term_data, term_code, out_dir):
        if term_code == "202508":
            raise OSError("disk full")
        return real_write(self, term_data, term_code, out_dir)

    monkeypatch.setattr(DataWriter, "write_term_data", fail_fall)
    client = FakeClient(make_courses("CS", 2))
    terms = [Term("2025", "fall"), Term("2025", "summer")]

    status = asyncio.run(run_terms(client, terms, str(tmp_path), 2, 0, None))

    assert status == 0
    assert read_json(tmp_path / "index.json")["terms"] == [{"term": "202505", "name": "Summer 2025"}]
