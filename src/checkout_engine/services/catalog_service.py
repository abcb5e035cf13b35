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

"""Read-only catalog lookups used for pricing and stock validation."""

from typing import Optional

from checkout_engine import db
from sqlalchemy.ext.asyncio import AsyncSession


class CatalogService:
  """Looks up products, variants and stock levels."""

  def __init__(
      self,
      products_session: AsyncSession,
      transactions_session: AsyncSession,
  ):
    self.products_session = products_session
    self.transactions_session = transactions_session

  async def get_product(self, product_id: int) -> Optional[db.Product]:
    return await db.get_product(self.products_session, product_id)

  async def get_variant(
      self, product_id: int, variant_id: int
  ) -> Optional[db.Variant]:
    """Resolves a variant among the variants of the given product."""
    variants = await db.get_product_variants(self.products_session, product_id)
    return next((v for v in variants if v.id == variant_id), None)

  async def get_stock(self, variant_id: int) -> int:
    """Returns current stock; variants without an inventory row have none."""
    stock = await db.get_stock(self.transactions_session, variant_id)
    return stock or 0
