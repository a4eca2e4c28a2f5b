# Description: Build and write the per-term datasets and the term index


import json
import logging
import os

import constants

logger = logging.getLogger(__name__)


class DataWriter:
    """
    Converts raw course payloads into the compact term format.

    Repeated values (meeting periods, locations, schedule types) are stored once
    in the term caches and referenced from each section by list index.
    One writer is used per term so the caches are not shared across terms.
    """

    def __init__(self):
        self.periods = []
        self.locations = []
        self.schedule_types = []
        self._cache_index = {}

    def intern(self, cache_name, cache, value):
        """
        Return the index of value in the cache, appending it if new
        """
        if value is None:
            return None
        key = (cache_name, json.dumps(value, sort_keys=True))
        if key not in self._cache_index:
            self._cache_index[key] = len(cache)
            cache.append(value)
        return self._cache_index[key]

    def convert_course(self, raw):
        sections = []
        for section in raw.get("sections", []):
            period = None
            if section.get("start") or section.get("end") or section.get("days"):
                period = {
                    "start": section.get("start"),
                    "end": section.get("end"),
                    "days": section.get("days"),
                }

            location = None
            if section.get("building") or section.get("room"):
                location = {
                    "building": section.get("building"),
                    "room": section.get("room"),
                }

            sections.append(
                {
                    "crn": section.get("crn"),
                    "section": section.get("section_number"),
                    "scheduleType": self.intern(
                        "scheduleTypes", self.schedule_types, section.get("schedule_type")
                    ),
                    "period": self.intern("periods", self.periods, period),
                    "location": self.intern("locations", self.locations, location),
                }
            )

        return {
            "label": raw.get("label"),
            "description": raw.get("description"),
            "creditHours": raw.get("credit_hours"),
            "sections": sections,
        }

    def generate_term_data(self, courses):
        return {
            "courses": dict(courses),
            "caches": {
                "periods": list(self.periods),
                "locations": list(self.locations),
                "scheduleTypes": list(self.schedule_types),
            },
        }

    def write_term_data(self, term_data, term_code, out_dir=constants.OUTPUT_PATH):
        """
        Write {term_code}.json. An existing file for the term is replaced
        """
        path = os.path.join(out_dir, f"{term_code}.json")
        write_json(term_data, path)
        logger.info(f"Wrote {len(term_data['courses'])} courses to {path}")
        return path

    def write_index(self, entries, out_dir=constants.OUTPUT_PATH):
        """
        Write index.json listing every term dataset produced by this run
        """
        path = os.path.join(out_dir, constants.INDEX_FILENAME)
        write_json({"terms": list(entries)}, path)
        logger.info(f"Wrote index of {len(entries)} terms to {path}")
        return path


def write_json(data, path):
    dir_path = os.path.dirname(path)
    if dir_path and not os.path.exists(dir_path):
        os.makedirs(dir_path)

    with open(path, "w", encoding="utf8") as out_file:
        json.dump(data, out_file, indent=2, ensure_ascii=False)
