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

"""Health check route."""

import logging

from checkout_engine import db
from checkout_engine import dependencies
from fastapi import APIRouter
from fastapi import Depends
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", operation_id="health")
async def health(
    transactions_session: AsyncSession = Depends(
        dependencies.get_transactions_db
    ),
) -> JSONResponse:
  """Reports whether the transactions database answers."""
  try:
    await db.ping(transactions_session)
  except SQLAlchemyError:
    logger.exception("Health check failed")
    return JSONResponse(status_code=500, content={"status": "error"})
  return JSONResponse(content={"status": "ok"})
