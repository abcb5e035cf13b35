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

"""Configurable fake payment provider for development and testing.

Session creation never leaves the process. Webhook deliveries use the Stripe
event and signature format, the same way Stripe's test mode does, so events
produced by `stripe listen` or by tests are handled identically.
"""

from typing import List, Optional, Union
from uuid import uuid4

from checkout_engine.models import PaymentEvent
from checkout_engine.payments.port import CheckoutSessionRequest
from checkout_engine.payments.port import CreatedSession
from checkout_engine.payments.port import PaymentProvider
from checkout_engine.payments.port import PaymentProviderError
from checkout_engine.payments.stripe_adapter import construct_stripe_event


class FakePaymentProvider(PaymentProvider):
  """Records session requests and returns predictable sessions."""

  def __init__(self, base_url: str = "https://pay.example.test") -> None:
    self.base_url = base_url.rstrip("/")
    self.should_succeed = True
    self.failure_reason = "Provider unavailable"
    self.requests: List[CheckoutSessionRequest] = []
    self.sessions: List[CreatedSession] = []

  def configure(
      self, should_succeed: bool, failure_reason: str = "Provider unavailable"
  ) -> None:
    """Configure provider behavior at runtime."""
    self.should_succeed = should_succeed
    self.failure_reason = failure_reason

  async def create_checkout_session(
      self, request: CheckoutSessionRequest
  ) -> CreatedSession:
    self.requests.append(request)
    if not self.should_succeed:
      raise PaymentProviderError(self.failure_reason)

    session_id = f"cs_test_{uuid4().hex}"
    session = CreatedSession(
        id=session_id, url=f"{self.base_url}/c/pay/{session_id}"
    )
    self.sessions.append(session)
    return session

  def construct_event(
      self,
      payload: Union[bytes, str],
      signature: Optional[str],
      secret: Optional[str],
      tolerance: Optional[int] = None,
  ) -> PaymentEvent:
    return construct_stripe_event(payload, signature, secret, tolerance)
