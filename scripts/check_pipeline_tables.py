"""
Pipeline table check.

Checks that the Supabase credentials are present and that every table the
pipeline writes to can be read with them.

Usage:
    python scripts/check_pipeline_tables.py
"""

import asyncio
import os
import sys
from typing import Dict, Optional

project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.join(project_root, "agentic_tutor_pipeline", "src"))
sys.path.insert(0, os.path.join(project_root, "backend"))

from agentic_tutor_pipeline.config import PipelineSettings
from agentic_tutor_pipeline.errors import PersistenceError
from agentic_tutor_pipeline.models import (
    SESSIONS_TABLE,
    CONTENT_TABLE,
    QUESTIONS_TABLE,
    RESPONSES_TABLE,
    FEEDBACK_TABLE,
    MESSAGES_TABLE,
)
from agentic_tutor_pipeline.store import SupabaseStore

PIPELINE_TABLES = [
    SESSIONS_TABLE,
    CONTENT_TABLE,
    QUESTIONS_TABLE,
    RESPONSES_TABLE,
    FEEDBACK_TABLE,
    MESSAGES_TABLE,
]


async def check_tables(store) -> Dict[str, Optional[str]]:
    """Read one row id from each table; maps table -> error message (None if readable)."""
    results: Dict[str, Optional[str]] = {}
    for table in PIPELINE_TABLES:
        try:
            await store.select(table, columns="id", limit=1)
            results[table] = None
        except PersistenceError as e:
            results[table] = e.message
    return results


def main() -> int:
    settings = PipelineSettings.from_env()
    print("SUPABASE_URL:", settings.supabase_url)
    print("SUPABASE_SERVICE_KEY (prefix):", settings.supabase_service_key[:12] + "..." if settings.supabase_service_key else None)

    if not settings.supabase_url or not settings.supabase_service_key:
        print("❌ Missing SUPABASE_URL or SUPABASE_SERVICE_KEY")
        return 1

    from lib.supabase_client import get_supabase_client

    store = SupabaseStore(get_supabase_client(settings))
    results = asyncio.run(check_tables(store))

    print("\n🔍 Table access:")
    for table, error in results.items():
        if error is None:
            print(f"✅ {table}")
        else:
            print(f"❌ {table}: {error}")

    return 0 if all(error is None for error in results.values()) else 1


if __name__ == "__main__":
    raise SystemExit(main())
