"""
Error taxonomy for the storefront.

Every error knows the HTTP status it maps to and how to render itself as a
JSON body, so the server needs exactly one exception handler.
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional


class ShopError(Exception):
    status_code = 500
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.retryable:
            body["retryable"] = True
        return body


class ValidationError(ShopError):
    status_code = 400


class NotFound(ShopError):
    status_code = 404


class ConflictError(ShopError):
    status_code = 409


class UnauthorizedError(ShopError):
    status_code = 401

    def __init__(self, message: str = "unauthorized") -> None:
        super().__init__(message)


class UnverifiedEventError(ShopError):
    status_code = 400


class PersistenceError(ShopError):
    status_code = 503
    retryable = True


class UpstreamTimeout(ShopError):
    status_code = 503
    retryable = True


# ----------------------------
# Per-item checkout rejections
# ----------------------------
class CartProblem(ShopError):
    status_code = 409
    reason = "rejected"

    def __init__(self, product_id: str, message: str) -> None:
        super().__init__(message)
        self.product_id = product_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "reason": self.reason,
            "message": self.message,
        }


class ProductUnavailable(CartProblem):
    reason = "product_unavailable"


class OutOfStock(CartProblem):
    reason = "out_of_stock"


class InsufficientStock(CartProblem):
    reason = "insufficient_stock"

    def __init__(self, product_id: str, message: str,
                 available: Optional[int] = None) -> None:
        super().__init__(product_id, message)
        self.available = available

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        if self.available is not None:
            d["available"] = self.available
        return d


class CartRejected(ShopError):
    status_code = 409

    def __init__(self, problems: List[CartProblem]) -> None:
        ids = ", ".join(p.product_id for p in problems)
        super().__init__(f"Some items in your cart can't be purchased: {ids}")
        self.problems = problems

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "problems": [p.to_dict() for p in self.problems],
        }
