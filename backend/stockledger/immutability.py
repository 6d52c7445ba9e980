"""
ORM-level immutability for the stock ledger.

InventoryMovement rows are written once and never changed: stock is the sum
of the ledger, so editing or deleting a row would silently rewrite history.
Corrections are new opposite-direction rows (see services/ledger_service.py).

Listeners fire before the SQL reaches the database, so a violating flush
aborts and the caller's transaction rolls back. Bulk query.update()/delete()
bypass mapper events and are not used against this table anywhere.
"""

from __future__ import annotations

import logging

from sqlalchemy import event

from .errors import ImmutableLedgerError
from .models import InventoryMovement

logger = logging.getLogger(__name__)


def _reject_update(mapper, connection, target):
    logger.error("Blocked update of inventory movement id=%s", target.id)
    raise ImmutableLedgerError(
        "Inventory movements are append-only; write a compensating movement instead",
        details={"movement_id": target.id},
    )


def _reject_delete(mapper, connection, target):
    logger.error("Blocked delete of inventory movement id=%s", target.id)
    raise ImmutableLedgerError(
        "Inventory movements cannot be deleted",
        details={"movement_id": target.id},
    )


def register_immutability_listeners() -> None:
    if event.contains(InventoryMovement, "before_update", _reject_update):
        return
    event.listen(InventoryMovement, "before_update", _reject_update)
    event.listen(InventoryMovement, "before_delete", _reject_delete)
