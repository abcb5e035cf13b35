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

"""Shared configuration and startup logic for the checkout engine."""

import contextlib
import logging
import os

from absl import flags
from checkout_engine import db
from checkout_engine.services.inventory_ledger import drain_inventory_tasks
from checkout_engine.services.shipping_service import SettingsCache
from fastapi import FastAPI

FLAGS = flags.FLAGS

logger = logging.getLogger(__name__)

try:
  flags.DEFINE_string("products_db_path", None, "Path to products DB")
  flags.DEFINE_string("transactions_db_path", None, "Path to transactions DB")
  flags.DEFINE_integer("port", None, "Port to run the server on")
  flags.DEFINE_string(
      "app_url",
      "http://localhost:3000",
      "Storefront base URL used for payment success and cancel redirects",
  )
  flags.DEFINE_string("currency", "usd", "ISO currency code for new orders")
  flags.DEFINE_enum(
      "payment_provider",
      "stripe",
      ["stripe", "fake"],
      "Payment provider used to open checkout sessions",
  )
  flags.DEFINE_string(
      "stripe_secret_key",
      os.environ.get("STRIPE_SECRET_KEY"),
      "Stripe secret API key",
  )
  flags.DEFINE_string(
      "webhook_secret",
      os.environ.get("STRIPE_WEBHOOK_SECRET"),
      "Signing secret for payment webhooks; unset disables verification",
  )
  flags.DEFINE_integer(
      "webhook_tolerance_seconds",
      300,
      "Maximum age of a signed webhook timestamp",
  )
  flags.DEFINE_string(
      "admin_token",
      os.environ.get("ADMIN_TOKEN"),
      "Token expected in the Admin-Token header of order endpoints",
  )
  flags.DEFINE_list(
      "shipping_allowed_countries",
      ["US"],
      "Countries the payment page may collect shipping addresses for",
  )
  flags.DEFINE_float(
      "settings_cache_ttl_seconds",
      60.0,
      "How long store settings are cached",
  )
except flags.DuplicateFlagError:
  pass


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
  """Shared lifespan manager for databases and the settings cache."""
  app.state.settings_cache = SettingsCache(
      ttl_seconds=FLAGS.settings_cache_ttl_seconds
  )
  # In tests or if flags aren't set, sessions come from dependency overrides.
  if FLAGS.products_db_path and FLAGS.transactions_db_path:
    await db.manager.init_dbs(
        FLAGS.products_db_path, FLAGS.transactions_db_path
    )
    # Tasks left queued by a previous process.
    summary = await drain_inventory_tasks(
        db.manager.transactions_session_factory
    )
    if summary.claimed:
      logger.info("Drained %d leftover inventory task(s)", summary.claimed)
  yield
  await db.manager.close()
