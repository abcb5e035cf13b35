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

"""FastAPI dependencies for the checkout engine.

This module contains dependency injection logic for FastAPI endpoints,
including:
- Database session management (Products and Transactions DBs).
- Payment provider selection and webhook secret lookup.
- Admin token verification for order endpoints.
- Service instantiation (CheckoutService, WebhookService, ShippingService).
"""

import hmac
from typing import AsyncGenerator, Optional

from checkout_engine import config
from checkout_engine import db
from checkout_engine.payments.fake_adapter import FakePaymentProvider
from checkout_engine.payments.port import PaymentProvider
from checkout_engine.payments.stripe_adapter import StripePaymentProvider
from checkout_engine.services.checkout_service import CheckoutService
from checkout_engine.services.shipping_service import SettingsCache
from checkout_engine.services.shipping_service import ShippingService
from checkout_engine.services.webhook_service import WebhookService
from fastapi import Depends
from fastapi import Header
from fastapi import HTTPException
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker


def get_products_session_factory() -> sessionmaker:
  """Dependency provider for the Products DB session factory."""
  return db.manager.products_session_factory


def get_transactions_session_factory() -> sessionmaker:
  """Dependency provider for the Transactions DB session factory.

  Background inventory drains open their own sessions from this factory.
  """
  return db.manager.transactions_session_factory


async def get_products_db(
    session_factory: sessionmaker = Depends(get_products_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
  """Dependency provider for Products DB session."""
  async with session_factory() as session:
    yield session


async def get_transactions_db(
    session_factory: sessionmaker = Depends(get_transactions_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
  """Dependency provider for Transactions DB session."""
  async with session_factory() as session:
    yield session


def get_payment_provider() -> PaymentProvider:
  """Dependency provider for the configured payment provider."""
  if config.FLAGS.payment_provider == "fake":
    return FakePaymentProvider()
  return StripePaymentProvider(config.FLAGS.stripe_secret_key)


def get_webhook_secret() -> Optional[str]:
  return config.FLAGS.webhook_secret


def get_admin_token() -> Optional[str]:
  return config.FLAGS.admin_token


async def verify_admin(
    admin_token: Optional[str] = Header(None, alias="Admin-Token"),
    expected_token: Optional[str] = Depends(get_admin_token),
) -> None:
  """Verifies the admin token for order management endpoints."""
  if not expected_token:
    raise HTTPException(status_code=500, detail="Admin token not configured")

  if not admin_token or not hmac.compare_digest(
      admin_token.encode("utf-8"), expected_token.encode("utf-8")
  ):
    raise HTTPException(status_code=401, detail="Unauthorized")


def get_settings_cache(request: Request) -> SettingsCache:
  """Returns the application's store settings cache."""
  cache = getattr(request.app.state, "settings_cache", None)
  if cache is None:
    # The lifespan did not run (e.g. a TestClient used outside `with`).
    cache = SettingsCache(ttl_seconds=config.FLAGS.settings_cache_ttl_seconds)
    request.app.state.settings_cache = cache
  return cache


def get_shipping_service(
    settings_cache: SettingsCache = Depends(get_settings_cache),
) -> ShippingService:
  """Dependency provider for ShippingService."""
  return ShippingService(settings_cache)


def get_checkout_service(
    shipping_service: ShippingService = Depends(get_shipping_service),
    payment_provider: PaymentProvider = Depends(get_payment_provider),
    products_session: AsyncSession = Depends(get_products_db),
    transactions_session: AsyncSession = Depends(get_transactions_db),
) -> CheckoutService:
  """Dependency provider for CheckoutService."""
  return CheckoutService(
      shipping_service,
      payment_provider,
      products_session,
      transactions_session,
      app_url=config.FLAGS.app_url,
      currency=config.FLAGS.currency,
      allowed_countries=config.FLAGS.shipping_allowed_countries,
  )


def get_webhook_service(
    payment_provider: PaymentProvider = Depends(get_payment_provider),
    transactions_session: AsyncSession = Depends(get_transactions_db),
    webhook_secret: Optional[str] = Depends(get_webhook_secret),
) -> WebhookService:
  """Dependency provider for WebhookService."""
  return WebhookService(
      payment_provider,
      transactions_session,
      webhook_secret=webhook_secret,
      tolerance_seconds=config.FLAGS.webhook_tolerance_seconds,
  )
