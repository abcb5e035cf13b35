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

"""Utility script to dump order data.

This script reads from the configured transactions SQLite database and prints
a summary of all stored orders, including their status and line items. Orders
still carrying a provisional session ID never got a payment session and are
flagged as unlinked.

Usage:
  python -m checkout_engine.dump_orders --transactions_db_path=...
"""

import asyncio
import sys
from typing import TextIO

from absl import app as absl_app
from checkout_engine import config
from checkout_engine import db
from checkout_engine.services.order_store import is_provisional_session_id
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker


async def write_orders(session_factory: sessionmaker, out: TextIO) -> None:
  """Writes a human readable summary of every order to `out`."""
  async with session_factory() as session:
    result = await session.execute(select(db.Order).order_by(db.Order.id))
    orders = result.scalars().all()

  if not orders:
    print("No orders found.", file=out)
    return

  for order in orders:
    marker = ""
    if is_provisional_session_id(order.external_session_id):
      marker = " (unlinked)"
    print(
        f"Order: {order.id} [{order.status}] {order.email}"
        f" session={order.external_session_id}{marker}",
        file=out,
    )
    for item in order.items:
      variant = item.variant_id if item.variant_id is not None else "-"
      price = item.unit_price_cents / 100.0
      print(
          f"  - product {item.product_id} variant {variant}"
          f" x{item.quantity} @ {price:.2f}",
          file=out,
      )
    print(
        f"  Total: {order.total_cents / 100.0:.2f} {order.currency.upper()}",
        file=out,
    )
    print("-" * 60, file=out)


async def dump_orders():
  """Queries the database and prints all orders."""
  if not config.FLAGS.transactions_db_path:
    print("Error: --transactions_db_path is required.")
    sys.exit(1)

  engine = db.create_sqlite_engine(config.FLAGS.transactions_db_path)
  try:
    await write_orders(db.make_session_factory(engine), sys.stdout)
  finally:
    await engine.dispose()


def main(argv):
  """Main entry point for the order dump script."""
  del argv
  asyncio.run(dump_orders())


if __name__ == "__main__":
  absl_app.run(main)
