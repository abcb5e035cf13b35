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

"""Shared fixtures for checkout engine tests.

Each test gets its own pair of temporary SQLite databases, seeded with a small
catalog:

  product 1 "T-Shirt" (base 2000)
    variant 10 "Large" price 1500, stock 5
    variant 11 "Small" no price of its own, stock 2
    variant 12 "XL" inactive, stock 10
  product 2 "Mug" (base 1200), no variants
  product 3 "Retired Hat" (base 900), inactive

and flat shipping of 500.
"""

import asyncio
import hashlib
import hmac
import json
import os
import shutil
import tempfile
import time
from typing import Any, Dict, Optional, Sequence, Tuple

from absl.testing import absltest
from checkout_engine import db
from checkout_engine.models import Address
from checkout_engine.services.order_store import OrderItemDraft
from checkout_engine.services.order_store import OrderStore
from sqlalchemy import func
from sqlalchemy import select
from sqlalchemy.pool import NullPool

WEBHOOK_SECRET = "whsec_test_secret"

SHIPPING_ADDRESS = {
    "line1": "1 Main St",
    "line2": None,
    "city": "Springfield",
    "state": "IL",
    "postal_code": "62701",
    "country": "US",
}


def sign_payload(
    payload: str, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None
) -> str:
  """Builds a `Stripe-Signature` header value for `payload`."""
  if timestamp is None:
    timestamp = int(time.time())
  signed = f"{timestamp}.{payload}".encode("utf-8")
  digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
  return f"t={timestamp},v1={digest}"


def make_event_payload(
    event_type: str,
    session_id: str,
    payment_intent_id: Optional[str] = "pi_test_123",
    shipping: Optional[Dict[str, Any]] = None,
    event_id: str = "evt_test_1",
) -> str:
  """Builds a Stripe-style checkout session event body."""
  session_obj = {
      "id": session_id,
      "object": "checkout.session",
      "payment_intent": payment_intent_id,
      "customer_details": {"email": "buyer@example.com"},
  }
  if shipping is not None:
    session_obj["shipping_details"] = shipping
  return json.dumps({
      "id": event_id,
      "object": "event",
      "type": event_type,
      "data": {"object": session_obj},
  })


class CheckoutEngineTestCase(absltest.TestCase):
  """Base test case with temporary, seeded databases."""

  def setUp(self) -> None:
    super().setUp()
    self.test_dir = tempfile.mkdtemp()
    self.products_db = os.path.join(self.test_dir, "test_products.db")
    self.transactions_db = os.path.join(self.test_dir, "test_transactions.db")

    # NullPool: every asyncio.run gets fresh connections on its own loop.
    self.manager = db.DatabaseManager()
    asyncio.run(
        self.manager.init_dbs(
            self.products_db, self.transactions_db, poolclass=NullPool
        )
    )
    self.products_session_factory = self.manager.products_session_factory
    self.transactions_session_factory = (
        self.manager.transactions_session_factory
    )
    asyncio.run(self._seed())

  def tearDown(self) -> None:
    asyncio.run(self.manager.close())
    shutil.rmtree(self.test_dir)
    super().tearDown()

  async def _seed(self) -> None:
    async with self.products_session_factory() as session:
      session.add_all([
          db.Product(
              id=1, name="T-Shirt", description="Cotton tee", base_price=2000
          ),
          db.Variant(id=10, product_id=1, name="Large", price=1500),
          db.Variant(id=11, product_id=1, name="Small", price=None),
          db.Variant(
              id=12, product_id=1, name="XL", price=1500, is_active=False
          ),
          db.Product(id=2, name="Mug", base_price=1200),
          db.Product(id=3, name="Retired Hat", base_price=900, is_active=False),
      ])
      await session.commit()

    async with self.transactions_session_factory() as session:
      session.add_all([
          db.Inventory(variant_id=10, stock=5),
          db.Inventory(variant_id=11, stock=2),
          db.Inventory(variant_id=12, stock=10),
          db.StoreSettings(
              shipping_mode="flat",
              flat_shipping_rate_cents=500,
              flat_shipping_label="Standard Shipping",
              updated_at=db.utcnow_iso(),
          ),
      ])
      await session.commit()

  async def set_store_settings(self, **values: Any) -> None:
    async with self.transactions_session_factory() as session:
      settings = await db.get_or_create_store_settings(session)
      for key, value in values.items():
        setattr(settings, key, value)
      await session.commit()

  async def create_order(
      self,
      lines: Sequence[Tuple[int, Optional[int], int, int]],
      session_id: Optional[str] = None,
      status: Optional[str] = None,
      shipping_address: Optional[Dict[str, Any]] = None,
  ) -> int:
    """Writes an order directly.

    Args:
      lines: (product_id, variant_id, quantity, unit_price_cents) tuples.
      session_id: Provider session to link; left provisional when None.
      status: Status to force after creation.
      shipping_address: Optional stored shipping address.

    Returns:
      The new order ID.
    """
    async with self.transactions_session_factory() as session:
      store = OrderStore(session)
      order = await store.create(
          email="buyer@example.com",
          currency="usd",
          total_cents=sum(qty * price for _, _, qty, price in lines),
          items=[
              OrderItemDraft(
                  product_id=product_id,
                  variant_id=variant_id,
                  quantity=qty,
                  unit_price_cents=price,
              )
              for product_id, variant_id, qty, price in lines
          ],
          shipping_name="Stored Name" if shipping_address else None,
          shipping_address=(
              Address.model_validate(shipping_address)
              if shipping_address
              else None
          ),
      )
      if session_id is not None:
        await store.link_session(order.id, session_id)
      if status is not None:
        order.status = status
      await session.commit()
      return order.id

  async def get_stock(self, variant_id: int) -> Optional[int]:
    async with self.transactions_session_factory() as session:
      return await db.get_stock(session, variant_id)

  async def get_order(self, order_id: int) -> Optional[db.Order]:
    async with self.transactions_session_factory() as session:
      return await db.get_order(session, order_id)

  async def count_rows(self, model: Any) -> int:
    async with self.transactions_session_factory() as session:
      result = await session.execute(select(func.count()).select_from(model))
      return result.scalar_one()
