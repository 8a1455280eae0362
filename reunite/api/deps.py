from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from fastapi import Header, HTTPException

from reunite.domain.errors import ReuniteError
from reunite.scripts.logging_config import get_logger
from reunite.services.engine import Engine, get_engine

logger = get_logger("api")


def engine() -> Engine:
    return get_engine()


def current_user(x_user_id: str = Header(..., alias="X-User-Id")) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail={"error": "missing_user", "reason": "X-User-Id header is required"})
    return user_id


def http_error(e: ReuniteError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail={"error": e.code, "reason": e.reason})


@contextmanager
def translate_errors() -> Iterator[None]:
    try:
        yield
    except ReuniteError as e:
        if e.status_code >= 500:
            logger.error("request failed: %s (%s)", e.code, e.reason)
        raise http_error(e) from e
