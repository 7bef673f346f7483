# stitcher/services/job_store.py
"""
Job record store. Records are flat dicts keyed by 'id'; the pipeline only
reads and writes the status, error and result fields.

SupabaseJobStore talks to the PostgREST API with requests and is therefore
SYNCHRONOUS: async callers run it through asyncio.to_thread.
"""
import copy
import logging
import threading
from typing import Dict, List

import requests

from stitcher.config import Settings
from stitcher.errors import JobStoreError

REQUEST_TIMEOUT = 30  # seconds


class MemoryJobStore:
    """Used when no Supabase project is configured, and in tests."""

    def __init__(self):
        self._records: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def insert(self, record: dict) -> dict:
        with self._lock:
            if record["id"] in self._records:
                raise JobStoreError(f"Record {record['id']} already exists")
            self._records[record["id"]] = copy.deepcopy(record)
            return copy.deepcopy(record)

    def patch(self, filters: dict, fields: dict) -> List[dict]:
        with self._lock:
            updated = []
            for record in self._records.values():
                if all(record.get(k) == v for k, v in filters.items()):
                    record.update(copy.deepcopy(fields))
                    updated.append(copy.deepcopy(record))
            return updated

    def select(self, filters: dict) -> List[dict]:
        with self._lock:
            return [
                copy.deepcopy(record)
                for record in self._records.values()
                if all(record.get(k) == v for k, v in filters.items())
            ]

    def upsert(self, record: dict) -> dict:
        """Replaces the whole record rather than merging into it."""
        with self._lock:
            self._records[record["id"]] = copy.deepcopy(record)
            return copy.deepcopy(record)


class SupabaseJobStore:
    def __init__(self, base_url: str, api_key: str, table: str = "video_jobs", session=None):
        self.endpoint = f"{base_url.rstrip('/')}/rest/v1/{table}"
        self.session = session or requests.Session()
        self.headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }

    @staticmethod
    def _params(filters: dict) -> dict:
        return {key: f"eq.{value}" for key, value in filters.items()}

    def _request(self, method: str, params=None, json=None) -> List[dict]:
        try:
            response = self.session.request(
                method, self.endpoint, headers=self.headers, params=params, json=json, timeout=REQUEST_TIMEOUT
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            body = ""
            if getattr(e, "response", None) is not None:
                body = f" ({e.response.status_code}: {e.response.text[:300]})"
            logging.error(f"Job store {method} failed{body}: {e}")
            raise JobStoreError(f"Job store {method} failed: {e}") from e
        if not response.content:
            return []
        return response.json()

    def insert(self, record: dict) -> dict:
        rows = self._request("POST", json=record)
        return rows[0] if rows else record

    def patch(self, filters: dict, fields: dict) -> List[dict]:
        return self._request("PATCH", params=self._params(filters), json=fields)

    def select(self, filters: dict) -> List[dict]:
        params = self._params(filters)
        params["select"] = "*"
        return self._request("GET", params=params)

    def upsert(self, record: dict) -> dict:
        if self.select({"id": record["id"]}):
            fields = {k: v for k, v in record.items() if k != "id"}
            rows = self.patch({"id": record["id"]}, fields)
            return rows[0] if rows else record
        return self.insert(record)


def build_job_store(settings: Settings):
    if settings.supabase_enabled:
        logging.info(f"Using Supabase job store (table '{settings.supabase_table}')")
        return SupabaseJobStore(settings.supabase_url, settings.supabase_key, settings.supabase_table)
    logging.warning("SUPABASE_URL/SUPABASE_KEY not set, job records are kept in memory only")
    return MemoryJobStore()
