"""
Ensure — the only insert-if-absent primitive of the trust store.

    select(natural_key)
      ├── Success          → False   (stored row left untouched)
      ├── Failure NOT_FOUND → insert → True
      └── any other Failure → propagated

A CONFLICT from the insert means another writer got there first inside a
concurrent transaction. It is returned as-is so the enclosing
TrustStore.run can retry the whole transaction.
"""

from __future__ import annotations

from typing import Any, TypeVar

import structlog
from railway import ErrorCode
from railway.result import Failure, Result, Success

from cert_trust.domain.ports import EntityTable

log = structlog.get_logger()

E = TypeVar("E")


def ensure(table: EntityTable[E, Any], entity: E) -> Result[bool]:
    """
    Store `entity` unless a row with its natural key already exists.

    Returns Result[bool]: True when the entity was inserted, False when it
    was already present.
    """
    key = entity.natural_key  # type: ignore[attr-defined]

    match table.select(key):
        case Success(_):
            return Result.success(False)
        case Failure(err) if err.code is ErrorCode.NOT_FOUND:
            log.debug("store.inserting", entity=type(entity).__name__)
            return table.insert(entity).map(lambda _: True)
        case Failure(err):
            return Result.failure_from(err)
    raise TypeError("unreachable")  # pragma: no cover
