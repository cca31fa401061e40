"""
Row sources for the club feature collection.

SheetsRowSource reads a Google Sheet through the Sheets v4 API with a
service account. StaticRowSource reads rows from a local CSV export and is
used for development and tests.
"""
import csv
import json
import logging
import os
from pathlib import Path
from typing import List, Optional

from google.oauth2 import service_account
from googleapiclient.discovery import build

from errors import ConfigInvalid, SourceUnavailable

logger = logging.getLogger(__name__)

SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets.readonly"]


class SheetsRowSource:
    """Google Sheets row source. Build it with from_settings(); nothing connects at import."""

    def __init__(self, service, spreadsheet_id: str):
        if not spreadsheet_id:
            raise ConfigInvalid("A spreadsheet id is required")
        self.service = service
        self.spreadsheet_id = spreadsheet_id
        self.last_range: Optional[str] = None

    @classmethod
    def from_settings(cls, settings) -> "SheetsRowSource":
        if not settings.spreadsheet_id:
            raise ConfigInvalid("SPREADSHEET_ID is not configured")
        credentials = load_credentials(settings.service_account_file, settings.service_account_json)
        service = build("sheets", "v4", credentials=credentials, cache_discovery=False)
        return cls(service, settings.spreadsheet_id)

    def sheet_titles(self) -> List[str]:
        """List tab titles (diagnostics only)."""
        try:
            meta = self.service.spreadsheets().get(spreadsheetId=self.spreadsheet_id).execute()
        except Exception as e:
            logger.warning(f"Could not read spreadsheet metadata: {e}")
            return []
        return [((s or {}).get("properties") or {}).get("title", "") for s in meta.get("sheets", [])]

    def fetch_rows(self, candidate_ranges: List[str]) -> List[List[str]]:
        """Try each range in order and return the rows of the first one that answers."""
        attempts = []
        for range_name in candidate_ranges:
            try:
                resp = (
                    self.service.spreadsheets()
                    .values()
                    .get(spreadsheetId=self.spreadsheet_id, range=range_name)
                    .execute()
                )
            except Exception as e:
                logger.info(f"Range {range_name!r} failed: {e}")
                attempts.append((range_name, str(e)))
                continue

            rows = (resp or {}).get("values") or []
            self.last_range = range_name
            logger.info(f"Using range {range_name!r}: {len(rows)} row(s)")
            return rows

        titles = self.sheet_titles()
        if titles:
            logger.info(f"Available sheets: {titles}")
        raise SourceUnavailable(
            f"No usable range among {list(candidate_ranges)} in spreadsheet {self.spreadsheet_id}",
            attempts=attempts,
        )


class StaticRowSource:
    """Rows from a CSV file (header line skipped, like range A2:O)."""

    def __init__(self, path: str, skip_header: bool = True):
        self.path = Path(path)
        self.skip_header = skip_header

    def fetch_rows(self, candidate_ranges: Optional[List[str]] = None) -> List[List[str]]:
        try:
            with open(self.path, "r", newline="", encoding="utf-8") as f:
                rows = [row for row in csv.reader(f)]
        except OSError as e:
            raise SourceUnavailable(f"Cannot read {self.path}: {e}") from e
        if self.skip_header and rows:
            rows = rows[1:]
        return rows


def load_credentials(service_account_file: str, service_account_json: str = ""):
    """Load service-account credentials from inline JSON or a key file."""
    if service_account_json:
        try:
            info = json.loads(service_account_json)
        except json.JSONDecodeError as e:
            raise ConfigInvalid(f"GOOGLE_SERVICE_ACCOUNT_JSON is not valid JSON: {e}") from e
        try:
            return service_account.Credentials.from_service_account_info(info, scopes=SHEETS_SCOPES)
        except (ValueError, KeyError) as e:
            raise ConfigInvalid(f"Invalid service account info: {e}") from e

    if not service_account_file or not os.path.exists(service_account_file):
        raise ConfigInvalid(f"Service account key file not found: {service_account_file!r}")
    try:
        return service_account.Credentials.from_service_account_file(service_account_file, scopes=SHEETS_SCOPES)
    except (ValueError, KeyError, OSError) as e:
        raise ConfigInvalid(f"Invalid service account key file {service_account_file}: {e}") from e


def row_source_from_settings(settings):
    """Pick the configured row source: a local data file wins over Google Sheets."""
    if settings.data_file:
        logger.info(f"Reading club rows from {settings.data_file}")
        return StaticRowSource(settings.data_file)
    return SheetsRowSource.from_settings(settings)
