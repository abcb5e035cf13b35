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

"""Utility script to dump inventory data.

This script reads the current stock levels and any recorded oversells from the
configured transactions SQLite database and outputs them to standard output in
CSV format. Oversells are paid orders whose decrement found too little stock
and need manual reconciliation.

Usage:
  python -m checkout_engine.dump_inventory --transactions_db_path=...
"""

import asyncio
import csv
import sys
from typing import TextIO

from absl import app as absl_app
from checkout_engine import config
from checkout_engine import db
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker


async def write_inventory(session_factory: sessionmaker, out: TextIO) -> None:
  """Writes stock levels, then oversell records, as CSV to `out`."""
  async with session_factory() as session:
    result = await session.execute(
        select(db.Inventory).order_by(db.Inventory.variant_id)
    )
    items = result.scalars().all()
    oversells = await db.get_oversell_records(session)

  writer = csv.writer(out)
  writer.writerow(["variant_id", "stock"])
  for item in items:
    writer.writerow([item.variant_id, item.stock])

  if oversells:
    writer.writerow([])
    writer.writerow([
        "order_id",
        "variant_id",
        "requested_quantity",
        "available_stock",
        "created_at",
    ])
    for record in oversells:
      writer.writerow([
          record.order_id,
          record.variant_id,
          record.requested_quantity,
          "" if record.available_stock is None else record.available_stock,
          record.created_at,
      ])


async def dump_inventory():
  """Queries the database and prints current inventory levels."""
  if not config.FLAGS.transactions_db_path:
    print("Error: --transactions_db_path is required.")
    sys.exit(1)

  engine = db.create_sqlite_engine(config.FLAGS.transactions_db_path)
  try:
    await write_inventory(db.make_session_factory(engine), sys.stdout)
  finally:
    await engine.dispose()


def main(argv):
  """Main entry point for the inventory dump script."""
  del argv
  asyncio.run(dump_inventory())


if __name__ == "__main__":
  absl_app.run(main)
