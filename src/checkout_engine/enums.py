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

"""Enumerations for the checkout engine.

This module defines the enums used throughout the engine to represent order
state, payment provider events, inventory work items and shipping settings.
"""

import enum


class OrderStatus(str, enum.Enum):
  PENDING = "pending"
  PAID = "paid"
  FAILED = "failed"
  CANCELLED = "cancelled"


# Statuses an administrator may set explicitly.
ADMIN_SETTABLE_STATUSES = frozenset(
    {OrderStatus.PENDING, OrderStatus.PAID, OrderStatus.CANCELLED}
)

# Allowed moves between statuses. `paid` is terminal.
ORDER_TRANSITIONS = {
    OrderStatus.PENDING: frozenset(
        {OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.CANCELLED}
    ),
    OrderStatus.FAILED: frozenset(
        {OrderStatus.PENDING, OrderStatus.PAID, OrderStatus.CANCELLED}
    ),
    OrderStatus.CANCELLED: frozenset({OrderStatus.PENDING, OrderStatus.PAID}),
    OrderStatus.PAID: frozenset(),
}


class PaymentEventType(str, enum.Enum):
  PAYMENT_COMPLETED = "payment_completed"
  PAYMENT_FAILED = "payment_failed"


class WebhookOutcome(str, enum.Enum):
  """What processing a single provider event did to local state."""

  ORDER_PAID = "order_paid"
  ALREADY_PAID = "already_paid"
  ORDER_NOT_FOUND = "order_not_found"
  ORDERS_FAILED = "orders_failed"
  IGNORED = "ignored"


class InventoryTaskStatus(str, enum.Enum):
  PENDING = "pending"
  DONE = "done"


class DecrementResult(str, enum.Enum):
  OK = "ok"
  INSUFFICIENT = "insufficient"


class ShippingMode(str, enum.Enum):
  FLAT = "flat"
  FREE = "free"
