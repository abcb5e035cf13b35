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

"""Request, response and event models for the checkout engine.

Public JSON bodies use camelCase keys (`productId`, `totalCents`). The shipping
address keeps the snake_case keys (`postal_code`) it is stored and exchanged
with the payment provider in.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic.alias_generators import to_camel

from checkout_engine.enums import PaymentEventType

_REQUIRED_ADDRESS_FIELDS = ("line1", "city", "state", "postal_code", "country")


class CamelModel(BaseModel):
  """Base model that reads and writes camelCase JSON keys."""

  model_config = ConfigDict(
      alias_generator=to_camel, populate_by_name=True, from_attributes=True
  )


class Address(BaseModel):
  """A structured postal address."""

  model_config = ConfigDict(extra="ignore")

  line1: Optional[str] = None
  line2: Optional[str] = None
  city: Optional[str] = None
  state: Optional[str] = None
  postal_code: Optional[str] = None
  country: Optional[str] = None

  def missing_fields(self) -> List[str]:
    return [f for f in _REQUIRED_ADDRESS_FIELDS if not getattr(self, f)]

  def to_record(self) -> Dict[str, Any]:
    """Serializes the address into the dict stored in the orders table."""
    return self.model_dump(mode="json")

  @classmethod
  def from_record(cls, record: Optional[Dict[str, Any]]) -> Optional["Address"]:
    if record is None:
      return None
    return cls.model_validate(record)


class ShippingInfo(BaseModel):
  name: Optional[str] = None
  address: Optional[Address] = None


class CartItem(CamelModel):
  product_id: int
  variant_id: Optional[int] = None
  quantity: int


class CheckoutRequest(CamelModel):
  """Body of `POST /checkout`. Any client-side price fields are ignored."""

  items: List[CartItem] = Field(default_factory=list)
  email: str = ""
  shipping: Optional[ShippingInfo] = None


class CheckoutResponse(CamelModel):
  session_id: str
  url: str
  order_id: int


class OrderItemResponse(CamelModel):
  id: int
  product_id: int
  variant_id: Optional[int] = None
  quantity: int
  unit_price_cents: int


class OrderResponse(CamelModel):
  id: int
  external_session_id: str
  external_payment_intent_id: Optional[str] = None
  email: str
  user_id: Optional[int] = None
  currency: str
  total_cents: int
  status: str
  shipping_name: Optional[str] = None
  shipping_address: Optional[Address] = None
  created_at: str
  items: List[OrderItemResponse] = Field(default_factory=list)


class OrderStatusUpdateRequest(BaseModel):
  status: Optional[str] = None


class PaymentEvent(BaseModel):
  """A provider-neutral view of an incoming payment webhook event."""

  provider_event_id: Optional[str] = None
  provider_event_type: str
  # None for event types the engine does not act on.
  type: Optional[PaymentEventType] = None
  session_id: Optional[str] = None
  payment_intent_id: Optional[str] = None
  shipping_name: Optional[str] = None
  shipping_address: Optional[Address] = None
  email: Optional[str] = None

  @property
  def has_shipping_details(self) -> bool:
    return self.shipping_name is not None or self.shipping_address is not None
