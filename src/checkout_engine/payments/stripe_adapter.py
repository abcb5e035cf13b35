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

"""Stripe payment provider adapter.

Uses the stripe-python SDK to create Checkout Sessions and to verify webhook
signatures (`Stripe-Signature: t=<timestamp>,v1=<hmac>`). Event payloads are
decoded into the provider-neutral `PaymentEvent` here so the webhook service
never handles Stripe objects directly.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Union

import stripe

from checkout_engine.enums import PaymentEventType
from checkout_engine.exceptions import EventParseError
from checkout_engine.exceptions import SignatureInvalidError
from checkout_engine.models import Address
from checkout_engine.models import PaymentEvent
from checkout_engine.payments.port import CheckoutSessionRequest
from checkout_engine.payments.port import CreatedSession
from checkout_engine.payments.port import PaymentProvider
from checkout_engine.payments.port import PaymentProviderError

logger = logging.getLogger(__name__)

STRIPE_EVENT_TYPES = {
    "checkout.session.completed": PaymentEventType.PAYMENT_COMPLETED,
    "checkout.session.async_payment_succeeded": (
        PaymentEventType.PAYMENT_COMPLETED
    ),
    "checkout.session.async_payment_failed": PaymentEventType.PAYMENT_FAILED,
}


def build_session_params(request: CheckoutSessionRequest) -> Dict[str, Any]:
  """Maps a session request onto `stripe.checkout.Session.create` params."""
  line_items = []
  for item in request.line_items:
    product_data = {"name": item.name}
    if item.description:
      product_data["description"] = item.description
    line_items.append({
        "price_data": {
            "currency": request.currency,
            "product_data": product_data,
            "unit_amount": item.unit_amount_cents,
        },
        "quantity": item.quantity,
    })

  params = {
      "mode": "payment",
      "payment_method_types": ["card"],
      "line_items": line_items,
      "success_url": request.success_url,
      "cancel_url": request.cancel_url,
      "customer_email": request.customer_email,
      "client_reference_id": str(request.order_id),
      "metadata": {"order_id": str(request.order_id)},
  }

  if request.shipping_address is not None:
    # Buyer already entered an address; pass it along instead of asking again.
    address = {
        k: v
        for k, v in request.shipping_address.to_record().items()
        if v is not None
    }
    params["payment_intent_data"] = {
        "shipping": {"name": request.shipping_name or "", "address": address}
    }
  else:
    params["shipping_address_collection"] = {
        "allowed_countries": list(request.allowed_countries)
    }
  return params


def verify_signature(
    payload: str,
    signature: Optional[str],
    secret: str,
    tolerance: Optional[int] = None,
) -> None:
  """Checks a `Stripe-Signature` header against the signing secret."""
  if not signature:
    raise SignatureInvalidError("Webhook Error: missing signature header")
  try:
    stripe.WebhookSignature.verify_header(
        payload, signature, secret, tolerance
    )
  except stripe.SignatureVerificationError as e:
    logger.error("Webhook signature verification failed: %s", e)
    raise SignatureInvalidError(f"Webhook Error: {e}") from e


def _payment_intent_id(value: Any) -> Optional[str]:
  if value is None:
    return None
  if isinstance(value, dict):
    return value.get("id")
  return str(value)


def _shipping_details(session_obj: Dict[str, Any]) -> Optional[Dict[str, Any]]:
  details = session_obj.get("shipping_details")
  if details:
    return details
  collected = session_obj.get("collected_information") or {}
  return collected.get("shipping_details")


def parse_event(payload: str) -> PaymentEvent:
  """Decodes a Stripe event body into a `PaymentEvent`."""
  try:
    data = json.loads(payload)
    event_type = data["type"]
    session_obj = data["data"]["object"]

    details = _shipping_details(session_obj)
    shipping_name = None
    shipping_address = None
    if details:
      shipping_name = details.get("name")
      if details.get("address"):
        shipping_address = Address.model_validate(details["address"])

    customer = session_obj.get("customer_details") or {}
    return PaymentEvent(
        provider_event_id=data.get("id"),
        provider_event_type=event_type,
        type=STRIPE_EVENT_TYPES.get(event_type),
        session_id=session_obj.get("id"),
        payment_intent_id=_payment_intent_id(
            session_obj.get("payment_intent")
        ),
        shipping_name=shipping_name,
        shipping_address=shipping_address,
        email=customer.get("email"),
    )
  except (ValueError, KeyError, TypeError, AttributeError) as e:
    raise EventParseError(f"Invalid webhook payload: {e}") from e


def construct_stripe_event(
    payload: Union[bytes, str],
    signature: Optional[str],
    secret: Optional[str],
    tolerance: Optional[int] = None,
) -> PaymentEvent:
  """Verifies (if a secret is configured) and parses a Stripe webhook."""
  if isinstance(payload, bytes):
    try:
      payload = payload.decode("utf-8")
    except UnicodeDecodeError as e:
      raise EventParseError("Invalid webhook payload encoding") from e

  if secret:
    verify_signature(payload, signature, secret, tolerance)
  else:
    logger.warning(
        "No webhook secret configured; parsing event without verification"
    )
  return parse_event(payload)


class StripePaymentProvider(PaymentProvider):
  """Production Stripe adapter."""

  def __init__(self, api_key: Optional[str]) -> None:
    self.api_key = api_key

  async def create_checkout_session(
      self, request: CheckoutSessionRequest
  ) -> CreatedSession:
    if not self.api_key:
      raise PaymentProviderError("Stripe secret key is not configured")

    params = build_session_params(request)
    try:
      # The SDK call blocks; keep it off the event loop.
      session = await asyncio.to_thread(
          stripe.checkout.Session.create, api_key=self.api_key, **params
      )
    except stripe.StripeError as e:
      raise PaymentProviderError(str(e)) from e
    return CreatedSession(id=session.id, url=session.url)

  def construct_event(
      self,
      payload: Union[bytes, str],
      signature: Optional[str],
      secret: Optional[str],
      tolerance: Optional[int] = None,
  ) -> PaymentEvent:
    return construct_stripe_event(payload, signature, secret, tolerance)
