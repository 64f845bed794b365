import logging
from typing import Any

from timetracker.providers import BaseProvider, SyncOptions
from timetracker.tempo import TempoProvider
from timetracker.toggl import TogglProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type[BaseProvider]] = {
    "TOGGL": TogglProvider,
    "TEMPO": TempoProvider,
}

_providers: dict[str, BaseProvider] = {}


def get_provider(source: str) -> BaseProvider:
    """Returns the cached provider instance for `source` (case-insensitive)."""
    key = source.upper()
    if key not in _providers:
        if key not in PROVIDER_CLASSES:
            raise ValueError(f"Unknown provider: {source}")
        _providers[key] = PROVIDER_CLASSES[key]()
    return _providers[key]


def get_all_providers() -> list[BaseProvider]:
    return [get_provider(name) for name in PROVIDER_CLASSES]


def clear_providers() -> None:
    _providers.clear()


def sync_all(force: bool = False) -> dict[str, Any]:
    """
    Syncs every provider in turn. One provider failing does not stop the
    others; its error is reported in its own result row.
    """
    results = []
    for provider in get_all_providers():
        if not provider.validate():
            results.append(
                {"provider": provider.name, "success": False, "error": "Provider not configured"}
            )
            continue

        try:
            result = provider.sync(SyncOptions(force_refresh=force))
        except Exception as e:
            logger.error(f"Sync failed for {provider.name}: {e}", exc_info=True)
            results.append({"provider": provider.name, "success": False, "error": str(e)})
            continue

        results.append(
            {
                "provider": provider.name,
                "success": True,
                "imported": result.count,
                "skipped": result.skipped,
                "cached": result.cached,
            }
        )

    succeeded = [r for r in results if r["success"]]
    return {
        "success": len(succeeded) == len(results),
        "total_imported": sum(r["imported"] for r in succeeded),
        "total_skipped": sum(r["skipped"] for r in succeeded),
        "results": results,
    }
