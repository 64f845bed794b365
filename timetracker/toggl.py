import logging
from datetime import datetime
from typing import Any

import httpx

from timetracker import cache
from timetracker.providers import BaseProvider, ProviderError, RawTimeEntry
from timetracker.settings import load_secret

logger = logging.getLogger(__name__)

TOGGL_API = "https://api.track.toggl.com/api/v9"


class TogglProvider(BaseProvider):
    name = "TOGGL"

    def _token(self) -> str | None:
        return load_secret("toggl_api_token", required=False)

    def fetch_from_api(self, start_date: str, end_date: str) -> list[dict[str, Any]]:
        """
        Fetches the user's time entries between two YYYY-MM-DD dates.

        Toggl returns running timers too; they carry a negative duration and
        are dropped by `keep()`.
        """
        token = self._token()
        if not token:
            raise ProviderError("TOGGL_API_TOKEN not configured (check environment or secrets)")

        params = {"start_date": start_date, "end_date": end_date}
        with httpx.Client(auth=(token, "api_token"), timeout=30) as client:
            resp = client.get(f"{TOGGL_API}/me/time_entries", params=params)
            try:
                resp.raise_for_status()
            except httpx.HTTPStatusError as exc:
                logger.error(f"Toggl API request failed: {exc}")
                logger.error(f"Response text: {exc.response.text}")
                if exc.response.status_code == 400:
                    raise ProviderError(
                        f"Toggl API error (400): {exc.response.text or 'invalid request (range too large?)'}"
                    ) from exc
                raise

        return resp.json() or []

    def keep(self, raw: dict[str, Any]) -> bool:
        return raw.get("duration", 0) >= 0

    def transform_entry(self, raw: dict[str, Any]) -> RawTimeEntry:
        start = datetime.fromisoformat(raw["start"].replace("Z", "+00:00"))
        return RawTimeEntry(
            external_id=str(raw["id"]),
            date=start,
            duration=raw["duration"] / 3600,
            project=self._project_name(raw.get("project_id")),
            description=raw.get("description"),
        )

    def _project_name(self, project_id: int | None) -> str:
        try:
            return cache.get_project_name(project_id)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Could not resolve Toggl project {project_id}: {e}")
            return f"Proj-{project_id}"

    def validate(self) -> bool:
        token = self._token()
        if not token:
            return False
        try:
            with httpx.Client(auth=(token, "api_token"), timeout=10) as client:
                resp = client.get(f"{TOGGL_API}/me")
                resp.raise_for_status()
            return True
        except httpx.HTTPError:
            return False
