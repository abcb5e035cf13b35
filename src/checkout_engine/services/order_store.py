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

"""Order state store: persistence and guarded mutation of orders.

Every status change goes through the transition table in
`enums.ORDER_TRANSITIONS` and is written with a conditional update, so two
handlers racing on the same order cannot both move it. Methods do not commit;
the calling service owns the transaction.
"""

import dataclasses
import datetime
import logging
from typing import List, Optional, Sequence, Tuple
import uuid

from checkout_engine import db
from checkout_engine.enums import ORDER_TRANSITIONS
from checkout_engine.enums import OrderStatus
from checkout_engine.exceptions import OrderNotFoundError
from checkout_engine.exceptions import TransitionRejectedError
from checkout_engine.models import Address
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# Orders carry this session ID prefix until the provider session is linked.
PROVISIONAL_SESSION_PREFIX = "pending_"


def new_provisional_session_id() -> str:
  return f"{PROVISIONAL_SESSION_PREFIX}{uuid.uuid4().hex}"


def is_provisional_session_id(session_id: Optional[str]) -> bool:
  return bool(session_id) and session_id.startswith(PROVISIONAL_SESSION_PREFIX)


@dataclasses.dataclass(frozen=True)
class OrderItemDraft:
  product_id: int
  variant_id: Optional[int]
  quantity: int
  unit_price_cents: int


class OrderStore:
  """Reads and writes orders through the transactions session."""

  def __init__(self, session: AsyncSession):
    self.session = session

  async def create(
      self,
      email: str,
      currency: str,
      total_cents: int,
      items: Sequence[OrderItemDraft],
      shipping_name: Optional[str] = None,
      shipping_address: Optional[Address] = None,
      user_id: Optional[int] = None,
  ) -> db.Order:
    """Adds a pending order keyed by a fresh provisional session ID."""
    order = db.Order(
        external_session_id=new_provisional_session_id(),
        email=email,
        user_id=user_id,
        currency=currency,
        total_cents=total_cents,
        status=OrderStatus.PENDING.value,
        shipping_name=shipping_name,
        shipping_address=(
            shipping_address.to_record() if shipping_address else None
        ),
        created_at=db.utcnow_iso(),
        items=[
            db.OrderItem(
                product_id=item.product_id,
                variant_id=item.variant_id,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
            )
            for item in items
        ],
    )
    return await db.add_order(self.session, order)

  async def find_by_id(self, order_id: int) -> Optional[db.Order]:
    return await db.get_order(self.session, order_id)

  async def find_by_session_id(self, session_id: str) -> Optional[db.Order]:
    return await db.get_order_by_session_id(self.session, session_id)

  async def link_session(self, order_id: int, session_id: str) -> None:
    """Replaces the provisional session ID with the provider's."""
    if not await db.set_order_session_id(self.session, order_id, session_id):
      raise OrderNotFoundError(f"Order {order_id} not found")

  async def update_status(
      self, order_id: int, status: str
  ) -> Tuple[db.Order, bool]:
    """Moves an order to `status` if the transition table allows it.

    Args:
      order_id: The order to update.
      status: The requested status value.

    Returns:
      The refreshed order and whether its status actually changed. Setting
      the status an order already has is a no-op.

    Raises:
      OrderNotFoundError: If the order does not exist.
      TransitionRejectedError: If `status` is unknown, the move is not
        allowed, or the order changed underneath us.
    """
    try:
      target = OrderStatus(status)
    except ValueError as e:
      raise TransitionRejectedError(f"Invalid status '{status}'") from e

    order = await self.find_by_id(order_id)
    if order is None:
      raise OrderNotFoundError(f"Order {order_id} not found")

    current = OrderStatus(order.status)
    if target is current:
      return order, False
    if target not in ORDER_TRANSITIONS[current]:
      raise TransitionRejectedError(
          f"Cannot change order {order_id} from '{current.value}' to"
          f" '{target.value}'",
          current_status=current.value,
      )

    if not await db.compare_and_set_order_status(
        self.session, order_id, current.value, target.value
    ):
      raise TransitionRejectedError(
          f"Order {order_id} was modified concurrently",
          current_status=current.value,
      )
    logger.info(
        "Order %s status %s -> %s", order_id, current.value, target.value
    )
    return await self.find_by_id(order_id), True

  async def attach_payment_details(
      self,
      order_id: int,
      payment_intent_id: Optional[str],
      shipping_name: Optional[str] = None,
      shipping_address: Optional[Address] = None,
      overwrite_shipping: bool = True,
  ) -> bool:
    """Marks an order paid and records the provider's payment details.

    Returns:
      True if this call moved the order to paid; False if it was already
      paid, in which case nothing is written.
    """
    shipping = None
    if overwrite_shipping:
      shipping = {
          "shipping_name": shipping_name,
          "shipping_address": (
              shipping_address.to_record() if shipping_address else None
          ),
      }
    return await db.mark_order_paid(
        self.session, order_id, payment_intent_id, shipping
    )

  async def mark_failed(self, session_id: str) -> int:
    """Moves pending orders for `session_id` to failed; returns the count."""
    return await db.mark_orders_failed(self.session, session_id)

  async def find_unlinked(
      self, older_than: datetime.datetime
  ) -> List[db.Order]:
    """Lists orders still holding a provisional session ID."""
    if older_than.tzinfo is None:
      older_than = older_than.replace(tzinfo=datetime.timezone.utc)
    cutoff = older_than.astimezone(datetime.timezone.utc).isoformat()
    return await db.get_orders_by_session_prefix(
        self.session, PROVISIONAL_SESSION_PREFIX, cutoff
    )
