"""Periodic match rescan.

1. Load every open lost report (unresolved / found).
2. Re-embed reports that are missing a text embedding.
3. Re-run the candidate scan; only pairs without an existing match get a new
   pending match, so repeated runs never notify twice for the same pair.

Run from cron or via ``POST /admin/rescan``.
Needs a persistent backend (STORE_BACKEND=firestore) to be useful as a
standalone process.
"""
from __future__ import annotations

from time import time

from config import settings
from reunite.scripts.logging_config import get_logger, setup_logging
from reunite.services import firestore_store

logger = get_logger("rescan")


def main() -> int:
    setup_logging(json_fmt=settings.LOG_JSON)
    if settings.STORE_BACKEND.lower() == "firestore" and not firestore_store.init_firebase():
        logger.error("rescan aborted: firestore backend without credentials")
        return 0
    from reunite.services.engine import get_engine

    start = time()
    engine = get_engine()
    try:
        created = engine.matcher.rescan_open_reports()
    finally:
        engine.close()
    logger.info("rescan_done new_matches=%d %.1fs", created, time() - start)
    return created


if __name__ == "__main__":
    main()
