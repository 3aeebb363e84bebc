"""
Unit of work for hierarchy mutations.

When the backend supports transactions (and ORGANIZATION_ATOMIC_MUTATIONS
is on) the block runs inside ``transaction.atomic`` and any error rolls
every write back. Otherwise the block runs as plain sequential writes with
no rollback; commands see ``uow.atomic == False`` and re-validate their
preconditions right before destructive writes.

Usage:
    with unit_of_work() as uow:
        tenant = lock_tenant(tenant_id, uow)
        ...

    with_transaction(lambda uow: do_work(uow))
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Optional

from django.conf import settings
from django.db import DEFAULT_DB_ALIAS, DatabaseError, IntegrityError, connections, transaction

from organization.errors import InternalError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnitOfWork:
    atomic: bool
    using: str = DEFAULT_DB_ALIAS


def transactions_supported(using: str = DEFAULT_DB_ALIAS) -> bool:
    if not getattr(settings, "ORGANIZATION_ATOMIC_MUTATIONS", True):
        return False
    return bool(connections[using].features.supports_transactions)


@contextmanager
def unit_of_work(using: Optional[str] = None):
    """
    Yield a ``UnitOfWork``. Storage failures surface as ``InternalError``.

    IntegrityError is left alone so callers can translate it (duplicate
    names, protected rows) into domain errors.
    """
    using = using or DEFAULT_DB_ALIAS
    try:
        if transactions_supported(using):
            with transaction.atomic(using=using):
                yield UnitOfWork(atomic=True, using=using)
        else:
            logger.debug("unit_of_work.sequential_fallback", extra={"using": using})
            yield UnitOfWork(atomic=False, using=using)
    except IntegrityError:
        raise
    except DatabaseError as exc:
        logger.exception("unit_of_work.storage_failure", extra={"using": using})
        raise InternalError(f"Storage failure: {exc}") from exc


def with_transaction(fn: Callable, using: Optional[str] = None):
    """Run ``fn(uow)`` inside a unit of work and return its result."""
    with unit_of_work(using) as uow:
        return fn(uow)
