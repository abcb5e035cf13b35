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

"""Checkout service for opening payment sessions and managing orders.

This module provides the `CheckoutService` class, which turns a cart into a
pending order and a hosted payment session, and carries the administrative
order operations.

Key responsibilities include:
- Validating the cart against the catalog (active products and variants, an
  advisory stock check that reserves nothing).
- Pricing every line from the catalog; prices sent by the client are ignored.
- Persisting the pending order and its price snapshot before the payment
  provider is called, then linking the provider's session ID to it.
- Reading orders and applying administrative status overrides.
"""

import collections
import dataclasses
import logging
import re
from typing import List, Optional, Sequence, Tuple

from checkout_engine import db
from checkout_engine.enums import ADMIN_SETTABLE_STATUSES
from checkout_engine.enums import OrderStatus
from checkout_engine.exceptions import CartEmptyError
from checkout_engine.exceptions import CheckoutEngineError
from checkout_engine.exceptions import InvalidRequestError
from checkout_engine.exceptions import ItemInvalidError
from checkout_engine.exceptions import OrderNotFoundError
from checkout_engine.exceptions import PaymentSessionCreationError
from checkout_engine.exceptions import PersistenceError
from checkout_engine.exceptions import PriceComputationError
from checkout_engine.models import CartItem
from checkout_engine.models import ShippingInfo
from checkout_engine.payments.port import CheckoutSessionRequest
from checkout_engine.payments.port import PaymentProvider
from checkout_engine.payments.port import PaymentProviderError
from checkout_engine.payments.port import SessionLineItem
from checkout_engine.services.catalog_service import CatalogService
from checkout_engine.services.inventory_ledger import InventoryLedger
from checkout_engine.services.order_store import OrderItemDraft
from checkout_engine.services.order_store import OrderStore
from checkout_engine.services.shipping_service import ShippingService
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Upper bounds keep amounts within what the provider and SQLite INTEGER accept.
MAX_ITEM_QUANTITY = 10_000
MAX_TOTAL_CENTS = 99_999_999


@dataclasses.dataclass(frozen=True)
class PricedLine:
  draft: OrderItemDraft
  name: str
  description: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class CheckoutResult:
  order_id: int
  session_id: str
  checkout_url: str


class CheckoutService:
  """Service for initiating checkouts and managing orders."""

  def __init__(
      self,
      shipping_service: ShippingService,
      payment_provider: PaymentProvider,
      products_session: AsyncSession,
      transactions_session: AsyncSession,
      app_url: str,
      currency: str = "usd",
      allowed_countries: Sequence[str] = ("US",),
  ):
    self.shipping_service = shipping_service
    self.payment_provider = payment_provider
    self.products_session = products_session
    self.transactions_session = transactions_session
    self.app_url = app_url.rstrip("/")
    self.currency = currency
    self.allowed_countries = tuple(allowed_countries)
    self.catalog = CatalogService(products_session, transactions_session)
    self.orders = OrderStore(transactions_session)
    self.ledger = InventoryLedger(transactions_session)

  async def initiate(
      self,
      items: Sequence[CartItem],
      email: str,
      shipping: Optional[ShippingInfo] = None,
      user_id: Optional[int] = None,
  ) -> CheckoutResult:
    """Creates a pending order and opens a payment session for it.

    Args:
      items: The cart lines. Only product, variant and quantity are read.
      email: The buyer's email address.
      shipping: Optional buyer-entered shipping name and address.
      user_id: Optional owning account.

    Returns:
      The order ID, the provider's session ID and the URL to redirect to.

    Raises:
      InvalidRequestError: For an empty cart, bad email, quantity, total or
        address.
      ItemInvalidError: For a missing or inactive product or variant, or a
        variant with too little stock.
      PriceComputationError: If a line cannot be priced.
      PaymentSessionCreationError: If the provider call fails. The order has
        already been written and stays pending.
      PersistenceError: If the order cannot be written or linked.
    """
    logger.info("Initiating checkout for %d cart item(s)", len(items))
    self._validate_request(items, email, shipping)

    lines = await self._price_items(items)
    subtotal_cents = sum(
        line.draft.unit_price_cents * line.draft.quantity for line in lines
    )

    try:
      quote = await self.shipping_service.calculate(
          self.transactions_session, subtotal_cents
      )
      total_cents = subtotal_cents + quote.amount_cents
      if total_cents < 0:
        raise PriceComputationError(f"Computed total {total_cents} is negative")
      if total_cents > MAX_TOTAL_CENTS:
        raise InvalidRequestError("Order total exceeds the maximum amount")

      order = await self.orders.create(
          email=email.strip(),
          currency=self.currency,
          total_cents=total_cents,
          items=[line.draft for line in lines],
          shipping_name=shipping.name if shipping else None,
          shipping_address=shipping.address if shipping else None,
          user_id=user_id,
      )
      await self.transactions_session.commit()
    except SQLAlchemyError as e:
      await self.transactions_session.rollback()
      logger.exception("Failed to persist pending order")
      raise PersistenceError("Failed to persist order") from e

    # Rolling back a later step expires the instance, so keep plain values.
    order_id = order.id

    logger.info(
        "Created pending order %s (total %d %s) with session placeholder %s",
        order_id,
        total_cents,
        self.currency,
        order.external_session_id,
    )

    session_line_items = [
        SessionLineItem(
            name=line.name,
            description=line.description,
            unit_amount_cents=line.draft.unit_price_cents,
            quantity=line.draft.quantity,
        )
        for line in lines
    ]
    if quote.amount_cents > 0:
      session_line_items.append(
          SessionLineItem(
              name=quote.label,
              unit_amount_cents=quote.amount_cents,
              quantity=1,
          )
      )

    request = CheckoutSessionRequest(
        order_id=order_id,
        currency=self.currency,
        line_items=session_line_items,
        success_url=(
            f"{self.app_url}/checkout/success"
            "?session_id={CHECKOUT_SESSION_ID}"
        ),
        cancel_url=f"{self.app_url}/checkout",
        customer_email=order.email,
        shipping_name=shipping.name if shipping else None,
        shipping_address=shipping.address if shipping else None,
        allowed_countries=self.allowed_countries,
    )

    try:
      created = await self.payment_provider.create_checkout_session(request)
    except PaymentProviderError as e:
      logger.exception(
          "Payment session creation failed; order %s left pending", order_id
      )
      raise PaymentSessionCreationError(
          order_id, f"Failed to create payment session: {e}"
      ) from e

    try:
      await self.orders.link_session(order_id, created.id)
      await self.transactions_session.commit()
    except SQLAlchemyError as e:
      await self.transactions_session.rollback()
      logger.exception(
          "Failed to link order %s to session %s", order_id, created.id
      )
      raise PersistenceError("Failed to link payment session") from e

    logger.info("Order %s linked to payment session %s", order_id, created.id)
    return CheckoutResult(
        order_id=order_id, session_id=created.id, checkout_url=created.url
    )

  async def get_order(self, order_id: int) -> db.Order:
    """Retrieves an order."""
    order = await self.orders.find_by_id(order_id)
    if order is None:
      raise OrderNotFoundError("Order not found")
    return order

  async def update_order_status(
      self, order_id: int, status: Optional[str]
  ) -> Tuple[db.Order, int]:
    """Applies an administrative status override.

    Moving an order into `paid` queues its stock decrements exactly as a
    provider confirmation would.

    Returns:
      The updated order and the number of inventory tasks queued.
    """
    if not status:
      raise InvalidRequestError("Status is required")
    if status not in {s.value for s in ADMIN_SETTABLE_STATUSES}:
      raise InvalidRequestError("Invalid status")

    try:
      order, changed = await self.orders.update_status(order_id, status)
      queued = 0
      if changed and order.status == OrderStatus.PAID.value:
        queued = await self.ledger.enqueue_for_order(order)
      await self.transactions_session.commit()
    except CheckoutEngineError:
      await self.transactions_session.rollback()
      raise
    except SQLAlchemyError as e:
      await self.transactions_session.rollback()
      logger.exception("Failed to update status of order %s", order_id)
      raise PersistenceError("Failed to update order") from e
    return order, queued

  def _validate_request(
      self,
      items: Sequence[CartItem],
      email: str,
      shipping: Optional[ShippingInfo],
  ) -> None:
    """Validates the cart shape, email and shipping address."""
    if not items:
      raise CartEmptyError()

    if not email or not email.strip():
      raise InvalidRequestError("Email is required")
    if not EMAIL_PATTERN.match(email.strip()):
      raise InvalidRequestError("Invalid email address")

    for item in items:
      if item.quantity <= 0:
        raise InvalidRequestError(
            f"Quantity for product {item.product_id} must be positive"
        )
      if item.quantity > MAX_ITEM_QUANTITY:
        raise InvalidRequestError(
            f"Quantity for product {item.product_id} exceeds the maximum of "
            f"{MAX_ITEM_QUANTITY}"
        )

    if shipping and shipping.address:
      missing = shipping.address.missing_fields()
      if missing:
        raise InvalidRequestError(
            f"Shipping address is missing: {', '.join(missing)}"
        )

  async def _price_items(self, items: Sequence[CartItem]) -> List[PricedLine]:
    """Resolves every cart line against the catalog and snapshots its price."""
    lines = []
    requested = collections.Counter()
    for item in items:
      product = await self.catalog.get_product(item.product_id)
      if product is None or not product.is_active:
        raise ItemInvalidError(
            item.product_id,
            f"Product {item.product_id} not found or inactive",
        )

      variant = None
      if item.variant_id is not None:
        variant = await self.catalog.get_variant(product.id, item.variant_id)
        if variant is None or not variant.is_active:
          raise ItemInvalidError(
              item.variant_id,
              f"Variant {item.variant_id} not found or inactive",
          )
        # Advisory only: the authoritative check is the paid-time decrement.
        # Lines repeating a variant are checked against their combined total.
        requested[variant.id] += item.quantity
        stock = await self.catalog.get_stock(variant.id)
        if stock < requested[variant.id]:
          raise ItemInvalidError(
              item.variant_id, f"Insufficient stock for variant {variant.name}"
          )

      if variant is not None and variant.price is not None:
        unit_price = variant.price
      else:
        unit_price = product.base_price
      if unit_price is None or unit_price < 0:
        raise PriceComputationError(
            f"No valid price for product {item.product_id}"
        )

      lines.append(
          PricedLine(
              draft=OrderItemDraft(
                  product_id=product.id,
                  variant_id=variant.id if variant is not None else None,
                  quantity=item.quantity,
                  unit_price_cents=unit_price,
              ),
              name=product.name + (f" - {variant.name}" if variant else ""),
              description=product.description or None,
          )
      )
    return lines
