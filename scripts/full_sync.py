# %%
# ruff: noqa
"""
One-off full sync of every configured provider, bypassing the response cache.

    python scripts/full_sync.py
"""
import json
import logging
import sys
from pathlib import Path

# Add project root to path so `timetracker` can be imported
project_root = Path(__file__).resolve().parents[1]
sys.path.append(str(project_root))

from timetracker.schema import init_database
from timetracker.sync import sync_all

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

init_database()

# %%
result = sync_all(force=True)
print(json.dumps(result, indent=2))

for row in result["results"]:
    if not row["success"]:
        print(f"{row['provider']}: {row['error']}")

sys.exit(0 if result["success"] else 1)
