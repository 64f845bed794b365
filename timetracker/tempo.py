import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from timetracker import settings
from timetracker.providers import BaseProvider, ProviderError, RawTimeEntry
from timetracker.settings import load_secret
from timetracker.timeutil import get_zone

logger = logging.getLogger(__name__)

TEMPO_WORKLOGS_URL = "https://api.tempo.io/4/worklogs"
PAGE_LIMIT = 1000


class TempoProvider(BaseProvider):
    name = "TEMPO"

    def __init__(self, cache_dir=None):
        super().__init__(cache_dir)
        self.issue_keys_resolved = 0
        self.issue_keys_fallback = 0

    def _token(self) -> str | None:
        return load_secret("tempo_api_token", required=False)

    def fetch_from_api(self, start_date: str, end_date: str) -> list[dict[str, Any]]:
        """Fetches all worklogs in the range, following `metadata.next` pages."""
        token = self._token()
        if not token:
            raise ProviderError("TEMPO_API_TOKEN not configured (check environment or secrets)")

        headers = {"Authorization": f"Bearer {token}"}
        url: str | None = TEMPO_WORKLOGS_URL
        params: dict[str, Any] | None = {"from": start_date, "to": end_date, "limit": PAGE_LIMIT}
        results: list[dict[str, Any]] = []

        with httpx.Client(headers=headers, timeout=30) as client:
            while url:
                resp = client.get(url, params=params)
                try:
                    resp.raise_for_status()
                except httpx.HTTPStatusError as exc:
                    logger.error(f"Tempo API request failed: {exc.response.text}")
                    raise ProviderError(
                        f"Tempo API error: {exc.response.status_code} - {exc.response.text}"
                    ) from exc

                data = resp.json()
                results.extend(data.get("results") or [])

                # `next` is a complete URL that already carries the query
                url = (data.get("metadata") or {}).get("next")
                params = None

        return results

    def reset_stats(self) -> None:
        self.issue_keys_resolved = 0
        self.issue_keys_fallback = 0

    def transform_entry(self, raw: dict[str, Any]) -> RawTimeEntry:
        issue = raw.get("issue") or {}
        issue_key = "Unknown Issue"
        project_name = ""

        if issue.get("key"):
            issue_key = issue["key"]
            self.issue_keys_resolved += 1
            project_name = (issue.get("project") or {}).get("name") or ""
        elif issue.get("id"):
            issue_key = f"Issue #{issue['id']}"
            self.issue_keys_fallback += 1
            logger.debug(f"[TEMPO] Worklog {raw.get('tempoWorklogId')}: no issue key, using id")

        return RawTimeEntry(
            external_id=str(raw["tempoWorklogId"]),
            date=_worklog_start(raw),
            duration=raw["timeSpentSeconds"] / 3600,
            project=f"{issue_key} - {project_name}" if project_name else issue_key,
            description=raw.get("description") or raw.get("comment") or "",
        )

    def extra_result(self) -> dict[str, Any]:
        return {
            "issue_keys_resolved": self.issue_keys_resolved,
            "issue_keys_fallback": self.issue_keys_fallback,
            "jira_base_url": settings.JIRA_BASE_URL,
        }

    def validate(self) -> bool:
        token = self._token()
        if not token:
            return False
        try:
            with httpx.Client(headers={"Authorization": f"Bearer {token}"}, timeout=10) as client:
                resp = client.get(TEMPO_WORKLOGS_URL, params={"limit": 1})
                resp.raise_for_status()
            return True
        except httpx.HTTPError:
            return False


def _worklog_start(raw: dict[str, Any]) -> datetime:
    """
    Tempo worklogs carry a wall-clock `startDate` and an optional `startTime`
    in the user's zone, read here as DEFAULT_TIMEZONE.
    """
    start = raw["startDate"]
    if raw.get("startTime"):
        start = f"{start}T{raw['startTime']}"
    local = datetime.fromisoformat(start).replace(tzinfo=get_zone(settings.DEFAULT_TIMEZONE))
    return local.astimezone(UTC)
