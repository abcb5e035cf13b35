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

"""Order management routes for the checkout engine."""

from checkout_engine import dependencies
from checkout_engine.models import OrderResponse
from checkout_engine.models import OrderStatusUpdateRequest
from checkout_engine.services.checkout_service import CheckoutService
from checkout_engine.services.inventory_ledger import drain_inventory_tasks
from fastapi import APIRouter
from fastapi import BackgroundTasks
from fastapi import Body
from fastapi import Depends
from fastapi import Path
from sqlalchemy.orm import sessionmaker

router = APIRouter(dependencies=[Depends(dependencies.verify_admin)])


@router.get(
    "/orders/{id}",
    response_model=OrderResponse,
    operation_id="get_order",
)
async def get_order(
    order_id: int = Path(..., alias="id"),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> OrderResponse:
  """Get an order by ID."""
  order = await checkout_service.get_order(order_id)
  return OrderResponse.model_validate(order)


@router.put(
    "/orders/{id}",
    response_model=OrderResponse,
    operation_id="update_order_status",
)
async def update_order_status(
    background_tasks: BackgroundTasks,
    order_id: int = Path(..., alias="id"),
    update: OrderStatusUpdateRequest = Body(...),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
    session_factory: sessionmaker = Depends(
        dependencies.get_transactions_session_factory
    ),
) -> OrderResponse:
  """Override an order's status."""
  order, queued = await checkout_service.update_order_status(
      order_id, update.status
  )
  if queued:
    background_tasks.add_task(drain_inventory_tasks, session_factory)
  return OrderResponse.model_validate(order)
