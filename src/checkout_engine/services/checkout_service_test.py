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

"""Tests for CheckoutService."""

import asyncio

from absl.testing import absltest
from checkout_engine import db
from checkout_engine import testing_util
from checkout_engine.enums import OrderStatus
from checkout_engine.exceptions import CartEmptyError
from checkout_engine.exceptions import InvalidRequestError
from checkout_engine.exceptions import ItemInvalidError
from checkout_engine.exceptions import PaymentSessionCreationError
from checkout_engine.exceptions import TransitionRejectedError
from checkout_engine.models import Address
from checkout_engine.models import CartItem
from checkout_engine.models import ShippingInfo
from checkout_engine.payments.fake_adapter import FakePaymentProvider
from checkout_engine.services.checkout_service import CheckoutService
from checkout_engine.services.order_store import is_provisional_session_id
from checkout_engine.services.shipping_service import SettingsCache
from checkout_engine.services.shipping_service import ShippingService


class CheckoutServiceTest(testing_util.CheckoutEngineTestCase):
  """Tests for CheckoutService."""

  def setUp(self) -> None:
    super().setUp()
    self.provider = FakePaymentProvider()

  async def _run(self, method, *args, **kwargs):
    """Builds a service on fresh sessions and calls `method` on it."""
    async with self.products_session_factory() as products_session:
      async with self.transactions_session_factory() as transactions_session:
        service = CheckoutService(
            ShippingService(SettingsCache()),
            self.provider,
            products_session,
            transactions_session,
            app_url="https://shop.example.com/",
        )
        return await getattr(service, method)(*args, **kwargs)

  def _initiate(self, items, email="buyer@example.com", shipping=None):
    return asyncio.run(
        self._run("initiate", items, email, shipping=shipping)
    )

  def test_total_is_computed_from_catalog(self) -> None:
    result = self._initiate(
        [CartItem(product_id=1, variant_id=10, quantity=2)]
    )
    order = asyncio.run(self.get_order(result.order_id))

    self.assertEqual(order.total_cents, 3500)
    self.assertEqual(order.status, OrderStatus.PENDING.value)
    self.assertEqual(order.external_session_id, result.session_id)
    self.assertEqual(order.currency, "usd")
    self.assertLen(order.items, 1)
    self.assertEqual(order.items[0].unit_price_cents, 1500)
    self.assertEqual(order.items[0].quantity, 2)
    self.assertEqual(result.session_id, self.provider.sessions[0].id)
    self.assertEqual(result.checkout_url, self.provider.sessions[0].url)

  def test_session_request_contents(self) -> None:
    result = self._initiate([
        CartItem(product_id=1, variant_id=10, quantity=2),
        CartItem(product_id=2, quantity=1),
    ])

    request = self.provider.requests[0]
    self.assertEqual(request.order_id, result.order_id)
    self.assertEqual(request.customer_email, "buyer@example.com")
    self.assertEqual(
        [
            (li.name, li.unit_amount_cents, li.quantity)
            for li in request.line_items
        ],
        [
            ("T-Shirt - Large", 1500, 2),
            ("Mug", 1200, 1),
            ("Standard Shipping", 500, 1),
        ],
    )
    self.assertEqual(
        request.success_url,
        "https://shop.example.com/checkout/success"
        "?session_id={CHECKOUT_SESSION_ID}",
    )
    self.assertEqual(request.cancel_url, "https://shop.example.com/checkout")
    self.assertIsNone(request.shipping_address)

  def test_variant_without_price_uses_base_price(self) -> None:
    result = self._initiate(
        [CartItem(product_id=1, variant_id=11, quantity=1)]
    )
    order = asyncio.run(self.get_order(result.order_id))
    self.assertEqual(order.items[0].unit_price_cents, 2000)
    self.assertEqual(order.total_cents, 2500)

  def test_free_shipping_threshold(self) -> None:
    asyncio.run(self.set_store_settings(free_shipping_min_subtotal_cents=3000))
    result = self._initiate(
        [CartItem(product_id=1, variant_id=10, quantity=2)]
    )
    order = asyncio.run(self.get_order(result.order_id))

    self.assertEqual(order.total_cents, 3000)
    # No shipping line is sent for free shipping.
    self.assertEqual(
        [li.name for li in self.provider.requests[0].line_items],
        ["T-Shirt - Large"],
    )

  def test_buyer_shipping_is_stored_and_forwarded(self) -> None:
    shipping = ShippingInfo(
        name="Jane Doe",
        address=Address.model_validate(testing_util.SHIPPING_ADDRESS),
    )
    result = self._initiate(
        [CartItem(product_id=2, quantity=1)], shipping=shipping
    )
    order = asyncio.run(self.get_order(result.order_id))

    self.assertEqual(order.shipping_name, "Jane Doe")
    self.assertEqual(order.shipping_address["line1"], "1 Main St")
    self.assertEqual(self.provider.requests[0].shipping_name, "Jane Doe")
    self.assertEqual(
        self.provider.requests[0].shipping_address.postal_code, "62701"
    )

  def test_incomplete_address_rejected(self) -> None:
    shipping = ShippingInfo(
        name="Jane Doe", address=Address(line1="1 Main St", country="US")
    )
    with self.assertRaisesRegex(InvalidRequestError, "postal_code"):
      self._initiate([CartItem(product_id=2, quantity=1)], shipping=shipping)
    self.assertEqual(asyncio.run(self.count_rows(db.Order)), 0)

  def test_empty_cart(self) -> None:
    with self.assertRaises(CartEmptyError):
      self._initiate([])

  def test_missing_email(self) -> None:
    with self.assertRaisesRegex(InvalidRequestError, "Email is required"):
      self._initiate([CartItem(product_id=2, quantity=1)], email="  ")

  def test_malformed_email(self) -> None:
    with self.assertRaisesRegex(InvalidRequestError, "Invalid email"):
      self._initiate([CartItem(product_id=2, quantity=1)], email="buyer")

  def test_non_positive_quantity(self) -> None:
    with self.assertRaises(InvalidRequestError):
      self._initiate([CartItem(product_id=2, quantity=0)])

  def test_excessive_quantity_creates_no_order(self) -> None:
    with self.assertRaisesRegex(InvalidRequestError, "exceeds the maximum"):
      self._initiate([CartItem(product_id=2, quantity=10**17)])
    self.assertEqual(asyncio.run(self.count_rows(db.Order)), 0)
    self.assertEmpty(self.provider.requests)

  def test_total_above_maximum_creates_no_order(self) -> None:
    with self.assertRaisesRegex(InvalidRequestError, "total exceeds"):
      self._initiate([CartItem(product_id=2, quantity=10_000)] * 9)
    self.assertEqual(asyncio.run(self.count_rows(db.Order)), 0)
    self.assertEmpty(self.provider.requests)

  def test_unknown_product(self) -> None:
    with self.assertRaises(ItemInvalidError) as ctx:
      self._initiate([CartItem(product_id=99, quantity=1)])
    self.assertEqual(ctx.exception.item_id, 99)

  def test_inactive_product(self) -> None:
    with self.assertRaises(ItemInvalidError):
      self._initiate([CartItem(product_id=3, quantity=1)])

  def test_inactive_variant_creates_no_order(self) -> None:
    with self.assertRaises(ItemInvalidError) as ctx:
      self._initiate([CartItem(product_id=1, variant_id=12, quantity=1)])
    self.assertEqual(ctx.exception.item_id, 12)
    self.assertEqual(asyncio.run(self.count_rows(db.Order)), 0)
    self.assertEmpty(self.provider.requests)

  def test_variant_of_other_product(self) -> None:
    with self.assertRaises(ItemInvalidError):
      self._initiate([CartItem(product_id=2, variant_id=10, quantity=1)])

  def test_out_of_stock_variant_creates_no_order(self) -> None:
    with self.assertRaisesRegex(ItemInvalidError, "Insufficient stock"):
      self._initiate([CartItem(product_id=1, variant_id=11, quantity=3)])
    self.assertEqual(asyncio.run(self.count_rows(db.Order)), 0)

  def test_repeated_variant_lines_share_stock_check(self) -> None:
    # Each line fits the stock of 2 on its own; together they do not.
    with self.assertRaisesRegex(ItemInvalidError, "Insufficient stock"):
      self._initiate([
          CartItem(product_id=1, variant_id=11, quantity=2),
          CartItem(product_id=1, variant_id=11, quantity=2),
      ])
    self.assertEqual(asyncio.run(self.count_rows(db.Order)), 0)

  def test_provider_failure_leaves_pending_order(self) -> None:
    self.provider.configure(should_succeed=False, failure_reason="card_error")
    with self.assertRaises(PaymentSessionCreationError) as ctx:
      self._initiate([CartItem(product_id=1, variant_id=10, quantity=1)])

    order = asyncio.run(self.get_order(ctx.exception.order_id))
    self.assertEqual(ctx.exception.status_code, 502)
    self.assertEqual(order.status, OrderStatus.PENDING.value)
    self.assertTrue(is_provisional_session_id(order.external_session_id))
    self.assertEqual(asyncio.run(self.get_stock(10)), 5)

  def test_admin_paid_override_queues_inventory(self) -> None:
    result = self._initiate(
        [CartItem(product_id=1, variant_id=10, quantity=2)]
    )
    order, queued = asyncio.run(
        self._run("update_order_status", result.order_id, "paid")
    )
    self.assertEqual(order.status, OrderStatus.PAID.value)
    self.assertEqual(queued, 1)
    self.assertEqual(asyncio.run(self.count_rows(db.InventoryTask)), 1)

  def test_admin_cancel_queues_nothing(self) -> None:
    result = self._initiate([CartItem(product_id=2, quantity=1)])
    order, queued = asyncio.run(
        self._run("update_order_status", result.order_id, "cancelled")
    )
    self.assertEqual(order.status, OrderStatus.CANCELLED.value)
    self.assertEqual(queued, 0)

  def test_admin_cannot_set_failed(self) -> None:
    result = self._initiate([CartItem(product_id=2, quantity=1)])
    with self.assertRaisesRegex(InvalidRequestError, "Invalid status"):
      asyncio.run(
          self._run("update_order_status", result.order_id, "failed")
      )

  def test_admin_cannot_leave_paid(self) -> None:
    result = self._initiate([CartItem(product_id=2, quantity=1)])
    asyncio.run(self._run("update_order_status", result.order_id, "paid"))
    with self.assertRaises(TransitionRejectedError):
      asyncio.run(
          self._run("update_order_status", result.order_id, "cancelled")
      )
    order = asyncio.run(self._run("get_order", result.order_id))
    self.assertEqual(order.status, OrderStatus.PAID.value)


if __name__ == "__main__":
  absltest.main()
