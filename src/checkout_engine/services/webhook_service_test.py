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

"""Tests for WebhookService."""

import asyncio
import time
from unittest import mock

from absl.testing import absltest
from checkout_engine import db
from checkout_engine import testing_util
from checkout_engine.enums import OrderStatus
from checkout_engine.enums import PaymentEventType
from checkout_engine.enums import WebhookOutcome
from checkout_engine.exceptions import EventParseError
from checkout_engine.exceptions import SignatureInvalidError
from checkout_engine.models import Address
from checkout_engine.models import PaymentEvent
from checkout_engine.payments.fake_adapter import FakePaymentProvider
from checkout_engine.services.inventory_ledger import drain_inventory_tasks
from checkout_engine.services.order_store import OrderStore
from checkout_engine.services.webhook_service import WebhookService

COMPLETED = "checkout.session.completed"
FAILED = "checkout.session.async_payment_failed"


def completed_event(session_id, shipping=True):
  return PaymentEvent(
      provider_event_id="evt_completed",
      provider_event_type=COMPLETED,
      type=PaymentEventType.PAYMENT_COMPLETED,
      session_id=session_id,
      payment_intent_id="pi_test_123",
      shipping_name="Jane Doe" if shipping else None,
      shipping_address=(
          Address.model_validate(testing_util.SHIPPING_ADDRESS)
          if shipping
          else None
      ),
  )


def failed_event(session_id):
  return PaymentEvent(
      provider_event_id="evt_failed",
      provider_event_type=FAILED,
      type=PaymentEventType.PAYMENT_FAILED,
      session_id=session_id,
  )


class WebhookServiceTest(testing_util.CheckoutEngineTestCase):
  """Tests for WebhookService."""

  async def _process(self, event):
    async with self.transactions_session_factory() as session:
      service = WebhookService(FakePaymentProvider(), session)
      return await service.process_event(event)

  async def _drain(self):
    return await drain_inventory_tasks(self.transactions_session_factory)

  def test_completed_marks_paid_and_decrements(self) -> None:
    async def scenario():
      order_id = await self.create_order(
          [(1, 10, 2, 1500)], session_id="cs_test_paid"
      )
      outcome = await self._process(completed_event("cs_test_paid"))
      queued_before_drain = await self.count_rows(db.InventoryTask)
      await self._drain()
      return (
          outcome,
          queued_before_drain,
          await self.get_order(order_id),
          await self.get_stock(10),
      )

    outcome, queued, order, stock = asyncio.run(scenario())
    self.assertEqual(outcome, WebhookOutcome.ORDER_PAID)
    self.assertEqual(queued, 1)
    self.assertEqual(order.status, OrderStatus.PAID.value)
    self.assertEqual(order.external_payment_intent_id, "pi_test_123")
    self.assertEqual(order.shipping_name, "Jane Doe")
    self.assertEqual(order.shipping_address["state"], "IL")
    self.assertEqual(stock, 3)

  def test_redelivery_is_idempotent(self) -> None:
    async def scenario():
      order_id = await self.create_order(
          [(1, 10, 2, 1500)], session_id="cs_test_redeliver"
      )
      first = await self._process(completed_event("cs_test_redeliver"))
      await self._drain()
      second = await self._process(completed_event("cs_test_redeliver"))
      await self._drain()
      return (
          first,
          second,
          await self.get_order(order_id),
          await self.get_stock(10),
          await self.count_rows(db.InventoryTask),
      )

    first, second, order, stock, tasks = asyncio.run(scenario())
    self.assertEqual(first, WebhookOutcome.ORDER_PAID)
    self.assertEqual(second, WebhookOutcome.ALREADY_PAID)
    self.assertEqual(order.status, OrderStatus.PAID.value)
    self.assertEqual(stock, 3)
    self.assertEqual(tasks, 1)

  def test_concurrent_redelivery_decrements_once(self) -> None:
    async def scenario():
      await self.create_order(
          [(1, 10, 2, 1500)], session_id="cs_test_race_same"
      )
      outcomes = await asyncio.gather(
          self._process(completed_event("cs_test_race_same")),
          self._process(completed_event("cs_test_race_same")),
      )
      await asyncio.gather(self._drain(), self._drain())
      return outcomes, await self.get_stock(10)

    outcomes, stock = asyncio.run(scenario())
    self.assertCountEqual(
        outcomes, [WebhookOutcome.ORDER_PAID, WebhookOutcome.ALREADY_PAID]
    )
    self.assertEqual(stock, 3)

  def test_lost_paid_race_is_acknowledged(self) -> None:
    async def scenario():
      order_id = await self.create_order(
          [(1, 10, 2, 1500)], session_id="cs_test_race_lost"
      )
      # Another handler marks the order paid between the read and the write.
      with mock.patch.object(
          OrderStore, "attach_payment_details", return_value=False
      ):
        outcome = await self._process(completed_event("cs_test_race_lost"))
      return (
          outcome,
          await self.get_order(order_id),
          await self.count_rows(db.InventoryTask),
      )

    outcome, order, queued = asyncio.run(scenario())
    self.assertEqual(outcome, WebhookOutcome.ALREADY_PAID)
    self.assertEqual(order.status, OrderStatus.PENDING.value)
    self.assertEqual(queued, 0)

  def test_unknown_session_is_acknowledged_without_mutation(self) -> None:
    async def scenario():
      order_id = await self.create_order(
          [(1, 10, 2, 1500)], session_id="cs_test_known"
      )
      outcome = await self._process(completed_event("cs_test_unknown"))
      await self._drain()
      return (
          outcome,
          await self.get_order(order_id),
          await self.get_stock(10),
      )

    outcome, order, stock = asyncio.run(scenario())
    self.assertEqual(outcome, WebhookOutcome.ORDER_NOT_FOUND)
    self.assertEqual(order.status, OrderStatus.PENDING.value)
    self.assertEqual(stock, 5)

  def test_completed_without_shipping_keeps_stored_address(self) -> None:
    async def scenario():
      order_id = await self.create_order(
          [(2, None, 1, 1200)],
          session_id="cs_test_no_shipping",
          shipping_address=testing_util.SHIPPING_ADDRESS,
      )
      await self._process(
          completed_event("cs_test_no_shipping", shipping=False)
      )
      return await self.get_order(order_id)

    order = asyncio.run(scenario())
    self.assertEqual(order.status, OrderStatus.PAID.value)
    self.assertEqual(order.shipping_name, "Stored Name")
    self.assertEqual(order.shipping_address["line1"], "1 Main St")

  def test_failed_marks_pending_order_failed(self) -> None:
    async def scenario():
      order_id = await self.create_order(
          [(1, 10, 1, 1500)], session_id="cs_test_failed"
      )
      outcome = await self._process(failed_event("cs_test_failed"))
      return outcome, await self.get_order(order_id)

    outcome, order = asyncio.run(scenario())
    self.assertEqual(outcome, WebhookOutcome.ORDERS_FAILED)
    self.assertEqual(order.status, OrderStatus.FAILED.value)

  def test_failed_after_paid_is_noop(self) -> None:
    async def scenario():
      order_id = await self.create_order(
          [(1, 10, 1, 1500)], session_id="cs_test_late_failure"
      )
      await self._process(completed_event("cs_test_late_failure"))
      outcome = await self._process(failed_event("cs_test_late_failure"))
      return outcome, await self.get_order(order_id)

    outcome, order = asyncio.run(scenario())
    self.assertEqual(outcome, WebhookOutcome.ORDERS_FAILED)
    self.assertEqual(order.status, OrderStatus.PAID.value)

  def test_completed_after_failed_marks_paid(self) -> None:
    async def scenario():
      order_id = await self.create_order(
          [(1, 10, 1, 1500)], session_id="cs_test_retry"
      )
      await self._process(failed_event("cs_test_retry"))
      outcome = await self._process(completed_event("cs_test_retry"))
      await self._drain()
      return outcome, await self.get_order(order_id), await self.get_stock(10)

    outcome, order, stock = asyncio.run(scenario())
    self.assertEqual(outcome, WebhookOutcome.ORDER_PAID)
    self.assertEqual(order.status, OrderStatus.PAID.value)
    self.assertEqual(stock, 4)

  def test_other_event_types_ignored(self) -> None:
    event = PaymentEvent(
        provider_event_type="checkout.session.expired",
        session_id="cs_test_whatever",
    )
    self.assertEqual(
        asyncio.run(self._process(event)), WebhookOutcome.IGNORED
    )

  def test_concurrent_orders_never_oversell(self) -> None:
    async def scenario():
      first = await self.create_order(
          [(1, 11, 2, 2000)], session_id="cs_test_race_a"
      )
      second = await self.create_order(
          [(1, 11, 2, 2000)], session_id="cs_test_race_b"
      )
      outcomes = await asyncio.gather(
          self._process(completed_event("cs_test_race_a")),
          self._process(completed_event("cs_test_race_b")),
      )
      await asyncio.gather(self._drain(), self._drain())
      async with self.transactions_session_factory() as session:
        records = await db.get_oversell_records(session)
      return (
          outcomes,
          await self.get_order(first),
          await self.get_order(second),
          await self.get_stock(11),
          records,
      )

    outcomes, first, second, stock, records = asyncio.run(scenario())
    self.assertEqual(outcomes, [WebhookOutcome.ORDER_PAID] * 2)
    self.assertEqual(first.status, OrderStatus.PAID.value)
    self.assertEqual(second.status, OrderStatus.PAID.value)
    self.assertEqual(stock, 0)
    self.assertLen(records, 1)
    self.assertEqual(records[0].requested_quantity, 2)
    self.assertEqual(records[0].available_stock, 0)


class ConstructEventTest(absltest.TestCase):
  """Signature verification and parsing of raw deliveries."""

  def _service(self, secret=testing_util.WEBHOOK_SECRET, tolerance=300):
    # Parsing never touches the database.
    return WebhookService(
        FakePaymentProvider(),
        None,
        webhook_secret=secret,
        tolerance_seconds=tolerance,
    )

  def test_valid_signature(self) -> None:
    payload = testing_util.make_event_payload(
        COMPLETED,
        "cs_test_sig",
        shipping={
            "name": "Jane Doe",
            "address": testing_util.SHIPPING_ADDRESS,
        },
    )
    event = self._service().construct_event(
        payload.encode("utf-8"), testing_util.sign_payload(payload)
    )
    self.assertEqual(event.type, PaymentEventType.PAYMENT_COMPLETED)
    self.assertEqual(event.session_id, "cs_test_sig")
    self.assertEqual(event.payment_intent_id, "pi_test_123")
    self.assertEqual(event.shipping_name, "Jane Doe")
    self.assertEqual(event.shipping_address.city, "Springfield")
    self.assertEqual(event.email, "buyer@example.com")

  def test_wrong_secret(self) -> None:
    payload = testing_util.make_event_payload(COMPLETED, "cs_test_sig")
    with self.assertRaises(SignatureInvalidError):
      self._service().construct_event(
          payload, testing_util.sign_payload(payload, secret="whsec_other")
      )

  def test_tampered_payload(self) -> None:
    payload = testing_util.make_event_payload(COMPLETED, "cs_test_sig")
    signature = testing_util.sign_payload(payload)
    tampered = payload.replace("cs_test_sig", "cs_test_evil")
    with self.assertRaises(SignatureInvalidError):
      self._service().construct_event(tampered, signature)

  def test_stale_timestamp(self) -> None:
    payload = testing_util.make_event_payload(COMPLETED, "cs_test_sig")
    signature = testing_util.sign_payload(
        payload, timestamp=int(time.time()) - 3600
    )
    with self.assertRaises(SignatureInvalidError):
      self._service().construct_event(payload, signature)

  def test_missing_signature(self) -> None:
    payload = testing_util.make_event_payload(COMPLETED, "cs_test_sig")
    with self.assertRaises(SignatureInvalidError):
      self._service().construct_event(payload, None)

  def test_unverified_without_secret(self) -> None:
    payload = testing_util.make_event_payload(FAILED, "cs_test_unsigned")
    event = self._service(secret=None).construct_event(payload, None)
    self.assertEqual(event.type, PaymentEventType.PAYMENT_FAILED)
    self.assertEqual(event.session_id, "cs_test_unsigned")

  def test_unknown_type_parses_without_mapping(self) -> None:
    payload = testing_util.make_event_payload(
        "checkout.session.expired", "cs_test_expired"
    )
    event = self._service(secret=None).construct_event(payload, None)
    self.assertIsNone(event.type)
    self.assertEqual(event.provider_event_type, "checkout.session.expired")

  def test_malformed_payload(self) -> None:
    with self.assertRaises(EventParseError):
      self._service(secret=None).construct_event(b"not json", None)

  def test_payload_without_object(self) -> None:
    with self.assertRaises(EventParseError):
      self._service(secret=None).construct_event('{"type": "x"}', None)


if __name__ == "__main__":
  absltest.main()
