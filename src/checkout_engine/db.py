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

"""Database management and persistence layer for the checkout engine.

This module provides the schema definitions, database session management, and
asynchronous data access helpers used by the engine. It utilizes SQLAlchemy with
SQLite (via aiosqlite) and separates read-only catalog data from transactional
order and inventory data.

Key features include:
- `DatabaseManager`: Handles asynchronous engine initialization and session
  factory setup for both 'Products' and 'Transactions' databases.
- WAL Mode: Enables SQLite Write-Ahead Logging so concurrent webhook and
  checkout handlers can read while one of them writes.
- Declarative Models: Defines tables for products, variants, inventory, orders,
  order items, the inventory task queue, oversell records and store settings.
- Data Access Helpers: Asynchronous functions for the queries the services
  need, including the conditional updates that guard stock and order status.
"""

import datetime
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import Boolean
from sqlalchemy import CheckConstraint
from sqlalchemy import Column
from sqlalchemy import ForeignKey
from sqlalchemy import Integer
from sqlalchemy import JSON
from sqlalchemy import select
from sqlalchemy import String
from sqlalchemy import text
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
from sqlalchemy.orm import sessionmaker

from checkout_engine.enums import InventoryTaskStatus
from checkout_engine.enums import OrderStatus

logger = logging.getLogger(__name__)

ProductBase = declarative_base()
TransactionBase = declarative_base()

# Seconds a connection waits on a locked database before giving up.
SQLITE_BUSY_TIMEOUT_SECONDS = 30


def utcnow_iso() -> str:
  return datetime.datetime.now(datetime.timezone.utc).isoformat()


def create_sqlite_engine(path: str, **engine_kwargs: Any) -> AsyncEngine:
  """Creates an async SQLite engine for the database file at `path`."""
  return create_async_engine(
      f"sqlite+aiosqlite:///{path}",
      echo=False,
      connect_args={"timeout": SQLITE_BUSY_TIMEOUT_SECONDS},
      **engine_kwargs,
  )


def make_session_factory(engine: AsyncEngine) -> sessionmaker:
  return sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


class DatabaseManager:
  """Manages database engines and sessions without using global variables."""

  def __init__(self) -> None:
    self.products_engine: Optional[AsyncEngine] = None
    self.transactions_engine: Optional[AsyncEngine] = None
    self.products_session_factory: Optional[sessionmaker] = None
    self.transactions_session_factory: Optional[sessionmaker] = None

  @property
  def initialized(self) -> bool:
    return self.transactions_session_factory is not None

  async def init_dbs(
      self, products_path: str, transactions_path: str, **engine_kwargs: Any
  ) -> None:
    """Initializes database engines and creates tables."""
    # Products DB Setup
    self.products_engine = create_sqlite_engine(products_path, **engine_kwargs)

    async with self.products_engine.connect() as conn:
      await conn.execute(text("PRAGMA journal_mode=WAL"))

    self.products_session_factory = make_session_factory(self.products_engine)

    async with self.products_engine.begin() as conn:
      await conn.run_sync(ProductBase.metadata.create_all)

    # Transactions DB Setup (includes Inventory)
    self.transactions_engine = create_sqlite_engine(
        transactions_path, **engine_kwargs
    )

    async with self.transactions_engine.connect() as conn:
      await conn.execute(text("PRAGMA journal_mode=WAL"))

    self.transactions_session_factory = make_session_factory(
        self.transactions_engine
    )

    async with self.transactions_engine.begin() as conn:
      await conn.run_sync(TransactionBase.metadata.create_all)

  async def close(self) -> None:
    """Closes all database engines."""
    if self.products_engine:
      await self.products_engine.dispose()
    if self.transactions_engine:
      await self.transactions_engine.dispose()
    self.products_engine = None
    self.transactions_engine = None
    self.products_session_factory = None
    self.transactions_session_factory = None


# Global manager instance (to be initialized via lifespan)
manager = DatabaseManager()


class Product(ProductBase):
  __tablename__ = "products"

  id = Column(Integer, primary_key=True)
  name = Column(String, nullable=False)
  description = Column(String, nullable=True)
  base_price = Column(Integer, nullable=False)  # Price in cents
  is_active = Column(Boolean, nullable=False, default=True)


class Variant(ProductBase):
  __tablename__ = "variants"

  id = Column(Integer, primary_key=True)
  product_id = Column(Integer, ForeignKey("products.id"), index=True)
  name = Column(String, nullable=False)
  price = Column(Integer, nullable=True)  # Falls back to the product price
  is_active = Column(Boolean, nullable=False, default=True)


class Inventory(TransactionBase):
  __tablename__ = "inventory"
  __table_args__ = (CheckConstraint("stock >= 0", name="stock_non_negative"),)

  variant_id = Column(Integer, primary_key=True)
  stock = Column(Integer, nullable=False, default=0)


class Order(TransactionBase):
  __tablename__ = "orders"

  id = Column(Integer, primary_key=True, autoincrement=True)
  external_session_id = Column(String, nullable=False, unique=True)
  external_payment_intent_id = Column(String, nullable=True)
  email = Column(String, nullable=False)
  user_id = Column(Integer, nullable=True, index=True)
  currency = Column(String, nullable=False)
  total_cents = Column(Integer, nullable=False)
  status = Column(String, nullable=False, index=True)
  shipping_name = Column(String, nullable=True)
  # {line1, line2, city, state, postal_code, country}
  shipping_address = Column(JSON, nullable=True)
  created_at = Column(String, nullable=False)

  items = relationship(
      "OrderItem",
      back_populates="order",
      lazy="selectin",
      order_by="OrderItem.id",
  )


class OrderItem(TransactionBase):
  __tablename__ = "order_items"
  __table_args__ = (CheckConstraint("quantity > 0", name="quantity_positive"),)

  id = Column(Integer, primary_key=True, autoincrement=True)
  order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
  product_id = Column(Integer, nullable=False)
  variant_id = Column(Integer, nullable=True)
  quantity = Column(Integer, nullable=False)
  unit_price_cents = Column(Integer, nullable=False)

  order = relationship("Order", back_populates="items")


class InventoryTask(TransactionBase):
  """A pending stock decrement owed by a paid order."""

  __tablename__ = "inventory_tasks"

  id = Column(Integer, primary_key=True, autoincrement=True)
  order_id = Column(Integer, nullable=False, index=True)
  # One task per order line, so a line can never be decremented twice.
  order_item_id = Column(Integer, nullable=False, unique=True)
  variant_id = Column(Integer, nullable=False)
  quantity = Column(Integer, nullable=False)
  status = Column(String, nullable=False, index=True)
  created_at = Column(String, nullable=False)
  processed_at = Column(String, nullable=True)


class OversellRecord(TransactionBase):
  __tablename__ = "oversell_records"

  id = Column(Integer, primary_key=True, autoincrement=True)
  order_id = Column(Integer, nullable=False, index=True)
  variant_id = Column(Integer, nullable=False)
  requested_quantity = Column(Integer, nullable=False)
  available_stock = Column(Integer, nullable=True)  # None: no inventory row
  created_at = Column(String, nullable=False)


class StoreSettings(TransactionBase):
  __tablename__ = "store_settings"

  id = Column(Integer, primary_key=True, autoincrement=True)
  shipping_mode = Column(String, nullable=False, default="flat")
  flat_shipping_rate_cents = Column(Integer, nullable=False, default=0)
  flat_shipping_label = Column(
      String, nullable=False, default="Standard Shipping"
  )
  free_shipping_min_subtotal_cents = Column(Integer, nullable=True)
  updated_at = Column(String, nullable=True)


# --- Data Access Helpers ---


async def get_product(
    session: AsyncSession, product_id: int
) -> Optional[Product]:
  """Retrieves a product by ID."""
  return await session.get(Product, product_id)


async def get_product_variants(
    session: AsyncSession, product_id: int
) -> List[Variant]:
  """Retrieves all variants of a product, active or not."""
  result = await session.execute(
      select(Variant).where(Variant.product_id == product_id)
  )
  return list(result.scalars().all())


async def get_stock(session: AsyncSession, variant_id: int) -> Optional[int]:
  """Retrieves the stock level for a variant."""
  result = await session.execute(
      select(Inventory.stock).where(Inventory.variant_id == variant_id)
  )
  return result.scalar_one_or_none()


async def decrement_stock(
    session: AsyncSession, variant_id: int, quantity: int
) -> bool:
  """Atomically decrements stock if sufficient stock exists."""
  stmt = (
      update(Inventory)
      .where(Inventory.variant_id == variant_id)
      .where(Inventory.stock >= quantity)
      .values(stock=Inventory.stock - quantity)
      .execution_options(synchronize_session=False)
  )
  result = await session.execute(stmt)
  return result.rowcount > 0


async def restock(session: AsyncSession, variant_id: int, quantity: int) -> None:
  """Adds stock for a variant, creating its inventory row if needed."""
  stmt = (
      update(Inventory)
      .where(Inventory.variant_id == variant_id)
      .values(stock=Inventory.stock + quantity)
      .execution_options(synchronize_session=False)
  )
  result = await session.execute(stmt)
  if result.rowcount == 0:
    session.add(Inventory(variant_id=variant_id, stock=quantity))


async def add_order(session: AsyncSession, order: Order) -> Order:
  """Adds an order (with its items) and flushes to assign IDs."""
  session.add(order)
  await session.flush()
  return order


async def get_order(session: AsyncSession, order_id: int) -> Optional[Order]:
  """Retrieves an order by ID, bypassing stale identity-map state."""
  return await session.get(Order, order_id, populate_existing=True)


async def get_order_by_session_id(
    session: AsyncSession, session_id: str
) -> Optional[Order]:
  """Retrieves an order by its external payment session ID."""
  result = await session.execute(
      select(Order)
      .where(Order.external_session_id == session_id)
      .execution_options(populate_existing=True)
  )
  return result.scalar_one_or_none()


async def set_order_session_id(
    session: AsyncSession, order_id: int, session_id: str
) -> bool:
  """Replaces an order's session ID."""
  result = await session.execute(
      update(Order)
      .where(Order.id == order_id)
      .values(external_session_id=session_id)
      .execution_options(synchronize_session=False)
  )
  return result.rowcount > 0


async def mark_order_paid(
    session: AsyncSession,
    order_id: int,
    payment_intent_id: Optional[str],
    shipping: Optional[Dict[str, Any]] = None,
) -> bool:
  """Moves an order to paid unless it already is.

  Args:
    session: The database session to use.
    order_id: The order to update.
    payment_intent_id: The provider's payment intent ID.
    shipping: Optional column values (`shipping_name`, `shipping_address`) to
      overwrite alongside the status.

  Returns:
    True if this call performed the transition, False if the order was
    already paid (or does not exist).
  """
  values = {
      "status": OrderStatus.PAID.value,
      "external_payment_intent_id": payment_intent_id,
  }
  if shipping:
    values.update(shipping)
  result = await session.execute(
      update(Order)
      .where(Order.id == order_id)
      .where(Order.status != OrderStatus.PAID.value)
      .values(**values)
      .execution_options(synchronize_session=False)
  )
  return result.rowcount > 0


async def mark_orders_failed(session: AsyncSession, session_id: str) -> int:
  """Moves pending orders with the given session ID to failed."""
  result = await session.execute(
      update(Order)
      .where(Order.external_session_id == session_id)
      .where(Order.status == OrderStatus.PENDING.value)
      .values(status=OrderStatus.FAILED.value)
      .execution_options(synchronize_session=False)
  )
  return result.rowcount


async def compare_and_set_order_status(
    session: AsyncSession,
    order_id: int,
    expected_status: str,
    new_status: str,
) -> bool:
  """Sets an order's status only if it still holds `expected_status`."""
  result = await session.execute(
      update(Order)
      .where(Order.id == order_id)
      .where(Order.status == expected_status)
      .values(status=new_status)
      .execution_options(synchronize_session=False)
  )
  return result.rowcount > 0


async def get_orders_by_session_prefix(
    session: AsyncSession, prefix: str, created_before: str
) -> List[Order]:
  """Retrieves orders whose session ID starts with `prefix`."""
  result = await session.execute(
      select(Order)
      .where(Order.external_session_id.startswith(prefix, autoescape=True))
      .where(Order.created_at < created_before)
      .order_by(Order.id)
  )
  return list(result.scalars().all())


async def add_inventory_tasks(session: AsyncSession, order: Order) -> int:
  """Queues one stock decrement per variant line of a paid order."""
  created_at = utcnow_iso()
  count = 0
  for item in order.items:
    if item.variant_id is None:
      continue
    session.add(
        InventoryTask(
            order_id=order.id,
            order_item_id=item.id,
            variant_id=item.variant_id,
            quantity=item.quantity,
            status=InventoryTaskStatus.PENDING.value,
            created_at=created_at,
        )
    )
    count += 1
  return count


async def get_pending_inventory_task_ids(
    session: AsyncSession, limit: Optional[int] = None
) -> List[int]:
  """Retrieves IDs of queued stock decrements, oldest first."""
  stmt = (
      select(InventoryTask.id)
      .where(InventoryTask.status == InventoryTaskStatus.PENDING.value)
      .order_by(InventoryTask.id)
  )
  if limit is not None:
    stmt = stmt.limit(limit)
  result = await session.execute(stmt)
  return list(result.scalars().all())


async def claim_inventory_task(
    session: AsyncSession, task_id: int
) -> Optional[InventoryTask]:
  """Atomically marks a pending task done and returns it.

  Returns None if another consumer already claimed the task.
  """
  result = await session.execute(
      update(InventoryTask)
      .where(InventoryTask.id == task_id)
      .where(InventoryTask.status == InventoryTaskStatus.PENDING.value)
      .values(status=InventoryTaskStatus.DONE.value, processed_at=utcnow_iso())
      .execution_options(synchronize_session=False)
  )
  if result.rowcount == 0:
    return None
  return await session.get(InventoryTask, task_id, populate_existing=True)


async def add_oversell_record(
    session: AsyncSession,
    order_id: int,
    variant_id: int,
    requested_quantity: int,
    available_stock: Optional[int],
) -> None:
  """Records a decrement that could not be applied."""
  session.add(
      OversellRecord(
          order_id=order_id,
          variant_id=variant_id,
          requested_quantity=requested_quantity,
          available_stock=available_stock,
          created_at=utcnow_iso(),
      )
  )


async def get_oversell_records(
    session: AsyncSession, order_id: Optional[int] = None
) -> List[OversellRecord]:
  """Retrieves oversell records, optionally for a single order."""
  stmt = select(OversellRecord).order_by(OversellRecord.id)
  if order_id is not None:
    stmt = stmt.where(OversellRecord.order_id == order_id)
  result = await session.execute(stmt)
  return list(result.scalars().all())


async def get_or_create_store_settings(session: AsyncSession) -> StoreSettings:
  """Retrieves the store settings row, creating it with defaults if missing."""
  result = await session.execute(
      select(StoreSettings).order_by(StoreSettings.id).limit(1)
  )
  settings = result.scalar_one_or_none()
  if settings is None:
    settings = StoreSettings(
        shipping_mode="flat",
        flat_shipping_rate_cents=0,
        flat_shipping_label="Standard Shipping",
        updated_at=utcnow_iso(),
    )
    session.add(settings)
    await session.flush()
  return settings


async def ping(session: AsyncSession) -> None:
  """Issues a trivial query to check the connection."""
  await session.execute(text("SELECT 1"))
