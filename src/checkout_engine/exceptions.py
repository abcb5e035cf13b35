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

"""Custom exceptions for the checkout engine."""

from typing import Optional


class CheckoutEngineError(Exception):
  """Base class for all checkout engine exceptions."""

  def __init__(
      self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500
  ):
    self.message = message
    self.code = code
    self.status_code = status_code
    super().__init__(self.message)


class InvalidRequestError(CheckoutEngineError):
  """Raised when the request is invalid (bad cart, email or address)."""

  def __init__(self, message: str, code: str = "INVALID_REQUEST"):
    super().__init__(message, code=code, status_code=400)


class CartEmptyError(InvalidRequestError):
  """Raised when a checkout is attempted with no items."""

  def __init__(self):
    super().__init__("Cart is empty", code="CART_EMPTY")


class CatalogMismatchError(CheckoutEngineError):
  """Raised when a product or variant is missing, inactive or out of stock."""

  def __init__(self, message: str, code: str = "CATALOG_MISMATCH"):
    super().__init__(message, code=code, status_code=400)


class ItemInvalidError(CatalogMismatchError):
  """Raised for a specific cart item that cannot be purchased."""

  def __init__(self, item_id: int, message: str):
    self.item_id = item_id
    super().__init__(message, code="ITEM_INVALID")


class PriceComputationError(CheckoutEngineError):
  """Raised when an authoritative price cannot be computed."""

  def __init__(self, message: str):
    super().__init__(message, code="PRICE_COMPUTATION_ERROR", status_code=400)


class PaymentSessionCreationError(CheckoutEngineError):
  """Raised when the payment provider refuses to open a checkout session.

  The order row has already been written at this point and stays `pending`
  with its provisional session id.
  """

  def __init__(self, order_id: int, message: str):
    self.order_id = order_id
    super().__init__(
        message, code="PAYMENT_SESSION_CREATION_FAILED", status_code=502
    )


class SignatureInvalidError(CheckoutEngineError):
  """Raised when a webhook payload fails signature verification."""

  def __init__(self, message: str):
    super().__init__(message, code="SIGNATURE_INVALID", status_code=400)


class EventParseError(CheckoutEngineError):
  """Raised when a webhook payload cannot be parsed into an event."""

  def __init__(self, message: str):
    super().__init__(message, code="INVALID_PAYLOAD", status_code=400)


class OrderNotFoundError(CheckoutEngineError):
  """Raised when a requested order does not exist."""

  def __init__(self, message: str):
    super().__init__(message, code="ORDER_NOT_FOUND", status_code=404)


class TransitionRejectedError(CheckoutEngineError):
  """Raised when an order status change violates the transition table."""

  def __init__(self, message: str, current_status: Optional[str] = None):
    self.current_status = current_status
    super().__init__(message, code="TRANSITION_REJECTED", status_code=400)


class PersistenceError(CheckoutEngineError):
  """Raised when the backing store fails; callers should retry."""

  def __init__(self, message: str):
    super().__init__(message, code="PERSISTENCE_ERROR", status_code=500)
