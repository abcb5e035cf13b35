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

"""Payment provider webhook route."""

from typing import Any, Optional

from checkout_engine import dependencies
from checkout_engine.services.inventory_ledger import drain_inventory_tasks
from checkout_engine.services.webhook_service import WebhookService
from fastapi import APIRouter
from fastapi import BackgroundTasks
from fastapi import Depends
from fastapi import Header
from fastapi import Request
from sqlalchemy.orm import sessionmaker

router = APIRouter()


@router.post(
    "/webhooks/payment",
    response_model=dict[str, Any],
    operation_id="payment_webhook",
)
async def payment_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    webhook_service: WebhookService = Depends(
        dependencies.get_webhook_service
    ),
    session_factory: sessionmaker = Depends(
        dependencies.get_transactions_session_factory
    ),
) -> dict[str, Any]:
  """Receive a payment event.

  The signature is checked against the raw body, so the body is read as bytes
  rather than parsed by FastAPI. Stock decrements run after the response.
  """
  payload = await request.body()
  event = webhook_service.construct_event(payload, stripe_signature)
  await webhook_service.process_event(event)
  # Also picks up tasks left by earlier deliveries.
  background_tasks.add_task(drain_inventory_tasks, session_factory)
  return {"received": True}
