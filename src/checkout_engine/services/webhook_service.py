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

"""Payment webhook processing.

Providers deliver events at least once, possibly concurrently and out of
order. Processing is idempotent per order: the move to `paid` is a
conditional update, and only the call that wins it queues the order's stock
decrements. Redeliveries of a completed event are acknowledged with no
further effect.
"""

import logging
from typing import Optional, Union

from checkout_engine.enums import OrderStatus
from checkout_engine.enums import PaymentEventType
from checkout_engine.enums import WebhookOutcome
from checkout_engine.exceptions import PersistenceError
from checkout_engine.models import PaymentEvent
from checkout_engine.payments.port import PaymentProvider
from checkout_engine.services.inventory_ledger import InventoryLedger
from checkout_engine.services.order_store import OrderStore
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class WebhookService:
  """Applies verified payment events to orders and inventory."""

  def __init__(
      self,
      payment_provider: PaymentProvider,
      transactions_session: AsyncSession,
      webhook_secret: Optional[str] = None,
      tolerance_seconds: Optional[int] = None,
  ):
    self.payment_provider = payment_provider
    self.transactions_session = transactions_session
    self.webhook_secret = webhook_secret
    self.tolerance_seconds = tolerance_seconds
    self.orders = OrderStore(transactions_session)
    self.ledger = InventoryLedger(transactions_session)

  def construct_event(
      self, payload: Union[bytes, str], signature: Optional[str]
  ) -> PaymentEvent:
    """Verifies and parses a raw delivery.

    Raises:
      SignatureInvalidError: If a secret is configured and the signature is
        missing or wrong.
      EventParseError: If the body is not a well-formed event.
    """
    return self.payment_provider.construct_event(
        payload, signature, self.webhook_secret, self.tolerance_seconds
    )

  async def process_event(self, event: PaymentEvent) -> WebhookOutcome:
    """Applies one event.

    Returns:
      What the event did. Every outcome is acknowledged to the provider;
      only a `PersistenceError` should cause a redelivery.
    """
    logger.info(
        "Processing payment event %s (%s) for session %s",
        event.provider_event_id,
        event.provider_event_type,
        event.session_id,
    )
    if event.type is PaymentEventType.PAYMENT_COMPLETED:
      return await self._handle_completed(event)
    if event.type is PaymentEventType.PAYMENT_FAILED:
      return await self._handle_failed(event)

    logger.info("Ignoring payment event type %s", event.provider_event_type)
    return WebhookOutcome.IGNORED

  async def _handle_completed(self, event: PaymentEvent) -> WebhookOutcome:
    if not event.session_id:
      logger.error(
          "Completed event %s carries no session ID", event.provider_event_id
      )
      return WebhookOutcome.ORDER_NOT_FOUND

    try:
      order = await self.orders.find_by_session_id(event.session_id)
      if order is None:
        logger.error(
            "Order not found for session %s; acknowledging event %s",
            event.session_id,
            event.provider_event_id,
        )
        return WebhookOutcome.ORDER_NOT_FOUND

      # Rolling back expires the instance, so keep plain values.
      order_id = order.id
      if order.status == OrderStatus.PAID.value:
        logger.info("Order %s is already paid; nothing to do", order_id)
        return WebhookOutcome.ALREADY_PAID

      if order.status != OrderStatus.PENDING.value:
        # The money was captured, so the payment wins over a local status.
        logger.warning(
            "Payment completed for order %s in status '%s'; marking paid",
            order_id,
            order.status,
        )

      won = await self.orders.attach_payment_details(
          order_id,
          event.payment_intent_id,
          shipping_name=event.shipping_name,
          shipping_address=event.shipping_address,
          overwrite_shipping=event.has_shipping_details,
      )
      if not won:
        await self.transactions_session.rollback()
        logger.info("Order %s was marked paid concurrently", order_id)
        return WebhookOutcome.ALREADY_PAID

      await self.ledger.enqueue_for_order(order)
      await self.transactions_session.commit()
    except SQLAlchemyError as e:
      await self.transactions_session.rollback()
      logger.exception(
          "Failed to record payment for session %s", event.session_id
      )
      raise PersistenceError("Failed to record payment") from e

    logger.info(
        "Order %s marked paid (payment intent %s)",
        order_id,
        event.payment_intent_id,
    )
    return WebhookOutcome.ORDER_PAID

  async def _handle_failed(self, event: PaymentEvent) -> WebhookOutcome:
    if not event.session_id:
      logger.error(
          "Failed event %s carries no session ID", event.provider_event_id
      )
      return WebhookOutcome.ORDER_NOT_FOUND

    try:
      count = await self.orders.mark_failed(event.session_id)
      await self.transactions_session.commit()
    except SQLAlchemyError as e:
      await self.transactions_session.rollback()
      logger.exception(
          "Failed to record payment failure for session %s", event.session_id
      )
      raise PersistenceError("Failed to record payment failure") from e

    if count:
      logger.info(
          "Marked %d order(s) failed for session %s", count, event.session_id
      )
    else:
      logger.info(
          "No pending order for session %s; failure event has no effect",
          event.session_id,
      )
    return WebhookOutcome.ORDERS_FAILED
