"""Supabase client singleton — import get_supabase() anywhere."""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Callable, Optional, TypeVar

import dotenv
from postgrest import APIError
from supabase import Client, create_client

from questforge.services.errors import StorageError

dotenv.load_dotenv()

T = TypeVar("T")

UNIQUE_VIOLATION = "23505"
# e.g. a non-uuid string compared with a uuid column
INVALID_TEXT_REPRESENTATION = "22P02"


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    url = os.environ.get("SUPABASE_URL", "")
    key = os.environ.get("SUPABASE_SERVICE_KEY", "")
    if not url or not key:
        raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in .env")
    return create_client(url, key)


def is_unique_violation(exc: BaseException) -> bool:
    return isinstance(exc, APIError) and str(getattr(exc, "code", "")) == UNIQUE_VIOLATION


def run_query(what: str, fn: Callable[[], T]) -> T:
    """Execute a store call, turning PostgREST/transport failures into StorageError."""
    try:
        return fn()
    except APIError as e:
        raise StorageError(f"{what} failed: {e.message}") from e
    except StorageError:
        raise
    except Exception as e:
        raise StorageError(f"{what} failed: {e}") from e


def run_lookup(what: str, fn: Callable[[], T]) -> Optional[T]:
    """
    run_query for a read keyed by a caller-supplied id. An id the column type
    rejects cannot match any row, so it yields None instead of StorageError.
    """
    try:
        return fn()
    except APIError as e:
        if str(getattr(e, "code", "")) == INVALID_TEXT_REPRESENTATION:
            return None
        raise StorageError(f"{what} failed: {e.message}") from e
    except StorageError:
        raise
    except Exception as e:
        raise StorageError(f"{what} failed: {e}") from e


def first_row(res: Any) -> Any:
    rows = getattr(res, "data", None) or []
    if isinstance(rows, dict):
        return rows
    return rows[0] if rows else None
