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

"""Tests for the inventory and order dump scripts."""

import asyncio
import io

from absl.testing import absltest
from checkout_engine import db
from checkout_engine import testing_util
from checkout_engine.dump_inventory import write_inventory
from checkout_engine.dump_orders import write_orders


class DumpTest(testing_util.CheckoutEngineTestCase):

  def test_inventory_csv(self) -> None:
    out = io.StringIO()
    asyncio.run(write_inventory(self.transactions_session_factory, out))
    self.assertEqual(
        out.getvalue().splitlines(),
        ["variant_id,stock", "10,5", "11,2", "12,10"],
    )

  def test_inventory_csv_lists_oversells(self) -> None:
    async def scenario():
      async with self.transactions_session_factory() as session:
        await db.add_oversell_record(
            session,
            order_id=3,
            variant_id=11,
            requested_quantity=4,
            available_stock=2,
        )
        await session.commit()
      out = io.StringIO()
      await write_inventory(self.transactions_session_factory, out)
      return out.getvalue().splitlines()

    lines = asyncio.run(scenario())
    self.assertEqual(lines[4], "")
    self.assertTrue(lines[5].startswith("order_id,variant_id"))
    self.assertTrue(lines[6].startswith("3,11,4,2,"))

  def test_orders_empty(self) -> None:
    out = io.StringIO()
    asyncio.run(write_orders(self.transactions_session_factory, out))
    self.assertEqual(out.getvalue(), "No orders found.\n")

  def test_orders_flag_unlinked(self) -> None:
    async def scenario():
      await self.create_order([(1, 10, 2, 1500)], session_id="cs_test_dump")
      await self.create_order([(2, None, 1, 1200)])
      out = io.StringIO()
      await write_orders(self.transactions_session_factory, out)
      return out.getvalue()

    text = asyncio.run(scenario())
    self.assertIn("session=cs_test_dump\n", text)
    self.assertIn("product 1 variant 10 x2 @ 15.00", text)
    self.assertIn("product 2 variant - x1 @ 12.00", text)
    self.assertEqual(text.count("(unlinked)"), 1)
    self.assertIn("Total: 30.00 USD", text)


if __name__ == "__main__":
  absltest.main()
