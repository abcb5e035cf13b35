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

"""Payment provider port (abstract interface).

Defines the two provider capabilities the engine relies on: opening a hosted
checkout session and turning an incoming webhook delivery into a
`PaymentEvent`. Adapters for Stripe and for local development implement it.
"""

import abc
import dataclasses
from typing import List, Optional, Sequence, Union

from checkout_engine.models import Address
from checkout_engine.models import PaymentEvent


class PaymentProviderError(Exception):
  """Raised by adapters when the provider rejects or fails a request."""


@dataclasses.dataclass(frozen=True)
class SessionLineItem:
  name: str
  unit_amount_cents: int
  quantity: int
  description: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class CheckoutSessionRequest:
  """Everything needed to open a hosted checkout session for an order."""

  order_id: int
  currency: str
  line_items: List[SessionLineItem]
  success_url: str
  cancel_url: str
  customer_email: str
  shipping_name: Optional[str] = None
  shipping_address: Optional[Address] = None
  allowed_countries: Sequence[str] = ("US",)


@dataclasses.dataclass(frozen=True)
class CreatedSession:
  id: str
  url: str


class PaymentProvider(abc.ABC):
  """Abstract payment provider interface."""

  @abc.abstractmethod
  async def create_checkout_session(
      self, request: CheckoutSessionRequest
  ) -> CreatedSession:
    """Opens a hosted checkout session.

    Raises:
      PaymentProviderError: If the provider could not create the session.
    """

  @abc.abstractmethod
  def construct_event(
      self,
      payload: Union[bytes, str],
      signature: Optional[str],
      secret: Optional[str],
      tolerance: Optional[int] = None,
  ) -> PaymentEvent:
    """Verifies (when `secret` is set) and parses a webhook delivery.

    Raises:
      SignatureInvalidError: If verification fails.
      EventParseError: If the payload is not a well-formed event.
    """
