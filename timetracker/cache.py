import logging
from typing import Any

import httpx

from timetracker.settings import load_secret

logger = logging.getLogger(__name__)

TOGGL_ME_URL = "https://api.track.toggl.com/api/v9/me?with_related_data=true"

# Simple in-memory cache for Toggl projects
_project_cache: dict[int, str] | None = None


def _fetch_all_projects() -> dict[int, str]:
    """
    Fetches all projects visible to the Toggl user and returns a mapping of
    project_id -> project_name.
    """
    token = load_secret("toggl_api_token", required=False)
    if not token:
        raise ValueError("TOGGL_API_TOKEN must be set.")

    # /me?with_related_data=true returns every project in one call
    with httpx.Client(auth=(token, "api_token"), timeout=10) as client:
        resp = client.get(TOGGL_ME_URL)
        resp.raise_for_status()
        data = resp.json()

    projects: list[dict[str, Any]] = data.get("projects") or []
    logger.info(f"Loaded {len(projects)} Toggl projects into cache")
    return {p["id"]: p["name"] for p in projects if "id" in p and "name" in p}


def get_project_name(project_id: int | None) -> str:
    """
    Gets a project name from the cache. If the cache is cold, it populates it first.
    """
    global _project_cache
    if project_id is None:
        return "No Project"

    if _project_cache is None:
        _project_cache = _fetch_all_projects()

    return _project_cache.get(project_id, f"Proj-{project_id}")


def clear() -> None:
    global _project_cache
    _project_cache = None
