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

"""Shipping service for quoting the shipping amount of an order.

This module encapsulates the store-wide shipping rules (flat rate, free
shipping, free-shipping threshold) read from the store settings, and the
cache those settings are read through.
"""

import dataclasses
import time
from typing import Callable, Optional

from checkout_engine import db
from checkout_engine.enums import ShippingMode
from sqlalchemy.ext.asyncio import AsyncSession

FREE_SHIPPING_LABEL = "Free Shipping"


@dataclasses.dataclass(frozen=True)
class ShippingQuote:
  amount_cents: int
  label: str


@dataclasses.dataclass(frozen=True)
class StoreSettingsSnapshot:
  """Detached copy of the settings row, safe to share across sessions."""

  shipping_mode: str
  flat_shipping_rate_cents: int
  flat_shipping_label: str
  free_shipping_min_subtotal_cents: Optional[int] = None

  @classmethod
  def from_row(cls, row: db.StoreSettings) -> "StoreSettingsSnapshot":
    return cls(
        shipping_mode=row.shipping_mode,
        flat_shipping_rate_cents=row.flat_shipping_rate_cents or 0,
        flat_shipping_label=row.flat_shipping_label or "Standard Shipping",
        free_shipping_min_subtotal_cents=row.free_shipping_min_subtotal_cents,
    )


class SettingsCache:
  """Caches store settings for `ttl_seconds`.

  One instance is owned by the application (see `config.lifespan`); call
  `invalidate()` after the settings row changes.
  """

  def __init__(
      self,
      ttl_seconds: float = 60.0,
      clock: Callable[[], float] = time.monotonic,
  ) -> None:
    self.ttl_seconds = ttl_seconds
    self._clock = clock
    self._value: Optional[StoreSettingsSnapshot] = None
    self._loaded_at = 0.0

  async def get(self, session: AsyncSession) -> StoreSettingsSnapshot:
    now = self._clock()
    if self._value is not None and now - self._loaded_at < self.ttl_seconds:
      return self._value

    row = await db.get_or_create_store_settings(session)
    self._value = StoreSettingsSnapshot.from_row(row)
    self._loaded_at = now
    return self._value

  def invalidate(self) -> None:
    self._value = None
    self._loaded_at = 0.0


class ShippingService:
  """Service for quoting shipping amounts."""

  def __init__(self, settings_cache: SettingsCache) -> None:
    self.settings_cache = settings_cache

  async def calculate(
      self, session: AsyncSession, subtotal_cents: int
  ) -> ShippingQuote:
    """Quotes the shipping amount for an order subtotal.

    Args:
      session: The transactions database session to read settings from.
      subtotal_cents: The order subtotal in cents.

    Returns:
      The shipping amount and the label shown to the buyer.
    """
    settings = await self.settings_cache.get(session)

    if settings.shipping_mode == ShippingMode.FREE.value:
      return ShippingQuote(amount_cents=0, label=FREE_SHIPPING_LABEL)

    threshold = settings.free_shipping_min_subtotal_cents
    if threshold is not None and subtotal_cents >= threshold:
      return ShippingQuote(amount_cents=0, label=FREE_SHIPPING_LABEL)

    return ShippingQuote(
        amount_cents=max(settings.flat_shipping_rate_cents, 0),
        label=settings.flat_shipping_label,
    )
