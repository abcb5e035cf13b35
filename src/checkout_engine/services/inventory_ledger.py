#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Inventory ledger: race-safe stock decrements keyed by variant.

Stock is only ever lowered through a conditional update
(`stock = stock - n WHERE stock >= n`), so concurrent paid orders for the same
variant can never push it below zero. A decrement that finds too little stock
leaves the row untouched and is written to `oversell_records` for manual
reconciliation.

Paid orders do not decrement inline. Winning the `paid` transition queues one
`inventory_tasks` row per variant line in the same transaction, and
`drain_inventory_tasks` applies them after the webhook has been acknowledged.
Each task is claimed with its own conditional update in the same transaction
as its decrement, so a task is applied at most once no matter how many
drainers run.
"""

import dataclasses
import logging
from typing import Optional

from checkout_engine import db
from checkout_engine.enums import DecrementResult
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class DrainSummary:
  claimed: int = 0
  decremented: int = 0
  oversold: int = 0
  failed: int = 0


class InventoryLedger:
  """Stock operations on the transactions database.

  Methods do not commit; the caller owns the transaction.
  """

  def __init__(self, session: AsyncSession):
    self.session = session

  async def decrement(self, variant_id: int, quantity: int) -> DecrementResult:
    if quantity <= 0:
      raise ValueError(f"Decrement quantity must be positive, got {quantity}")
    if await db.decrement_stock(self.session, variant_id, quantity):
      return DecrementResult.OK
    return DecrementResult.INSUFFICIENT

  async def restock(self, variant_id: int, quantity: int) -> None:
    if quantity <= 0:
      raise ValueError(f"Restock quantity must be positive, got {quantity}")
    await db.restock(self.session, variant_id, quantity)

  async def get_stock(self, variant_id: int) -> Optional[int]:
    return await db.get_stock(self.session, variant_id)

  async def enqueue_for_order(self, order: db.Order) -> int:
    """Queues the stock decrements owed by a newly paid order."""
    count = await db.add_inventory_tasks(self.session, order)
    logger.info("Queued %d inventory task(s) for order %s", count, order.id)
    return count

  async def process_task(self, task_id: int) -> Optional[DecrementResult]:
    """Claims and applies one queued decrement.

    Returns:
      The decrement result, or None if the task was already claimed.
    """
    task = await db.claim_inventory_task(self.session, task_id)
    if task is None:
      return None

    result = await self.decrement(task.variant_id, task.quantity)
    if result is DecrementResult.INSUFFICIENT:
      available = await db.get_stock(self.session, task.variant_id)
      await db.add_oversell_record(
          self.session,
          order_id=task.order_id,
          variant_id=task.variant_id,
          requested_quantity=task.quantity,
          available_stock=available,
      )
      logger.warning(
          "Oversell: order %s needs %d of variant %s but only %s in stock",
          task.order_id,
          task.quantity,
          task.variant_id,
          available,
      )
    return result


async def drain_inventory_tasks(
    session_factory: sessionmaker, limit: Optional[int] = None
) -> DrainSummary:
  """Applies queued stock decrements, one transaction per task.

  A task whose transaction fails is rolled back and stays queued for the next
  drain.
  """
  summary = DrainSummary()
  async with session_factory() as session:
    task_ids = await db.get_pending_inventory_task_ids(session, limit)

  for task_id in task_ids:
    async with session_factory() as session:
      try:
        result = await InventoryLedger(session).process_task(task_id)
        await session.commit()
      except SQLAlchemyError:
        await session.rollback()
        logger.exception(
            "Failed to apply inventory task %s; it stays queued", task_id
        )
        summary.failed += 1
        continue

    if result is None:
      continue
    summary.claimed += 1
    if result is DecrementResult.OK:
      summary.decremented += 1
    else:
      summary.oversold += 1

  if task_ids:
    logger.info("Drained inventory tasks: %s", summary)
  return summary
