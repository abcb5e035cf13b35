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

"""Checkout Engine Server (Python/FastAPI)."""

import logging
import sys
from typing import Sequence

from absl import app as absl_app
from checkout_engine import __version__
from checkout_engine import config
from checkout_engine.exceptions import CheckoutEngineError
from checkout_engine.routes.checkout import router as checkout_router
from checkout_engine.routes.health import router as health_router
from checkout_engine.routes.order import router as order_router
from checkout_engine.routes.webhook import router as webhook_router
from fastapi import FastAPI
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Checkout Engine",
    version=__version__,
    description="Catalog-priced checkout with payment webhooks and inventory",
    lifespan=config.lifespan,
)


@app.exception_handler(CheckoutEngineError)
async def checkout_engine_exception_handler(
    request: Request, exc: CheckoutEngineError
):
  """Converts engine exceptions to JSON error responses."""
  del request  # Unused.
  return JSONResponse(
      status_code=exc.status_code,
      content={"error": exc.message, "code": exc.code},
  )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
):
  """Reports malformed request bodies and parameters as 400."""
  del request  # Unused.
  errors = exc.errors()
  message = "Invalid request"
  if errors:
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = f"Invalid request: {location}: {first.get('msg', '')}"
  return JSONResponse(
      status_code=400,
      content={"error": message, "code": "INVALID_REQUEST"},
  )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
):
  """Renders HTTP errors in the same shape as engine errors."""
  del request  # Unused.
  return JSONResponse(
      status_code=exc.status_code,
      content={"error": str(exc.detail)},
      headers=getattr(exc, "headers", None),
  )


app.include_router(checkout_router)
app.include_router(webhook_router)
app.include_router(order_router)
app.include_router(health_router)


def main(argv: Sequence[str]) -> None:
  """Main entry point for the Checkout Engine Server."""
  del argv  # Unused.

  if (
      config.FLAGS.products_db_path is None
      or config.FLAGS.transactions_db_path is None
      or config.FLAGS.port is None
  ):
    logger.error(
        "Both --products_db_path, --transactions_db_path, and --port must be"
        " provided."
    )
    print("\nUsage:")
    print(config.FLAGS.main_module_help())
    sys.exit(1)

  if not config.FLAGS.webhook_secret:
    logger.warning(
        "--webhook_secret is not set; webhook signatures will not be verified"
    )

  uvicorn.run(app, host="0.0.0.0", port=config.FLAGS.port)


def run() -> None:
  absl_app.run(main)


if __name__ == "__main__":
  run()
