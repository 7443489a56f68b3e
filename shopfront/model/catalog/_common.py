from typing import Optional

from ...errors import ValidationError


def check_product_fields(price_cents: Optional[int], inventory: Optional[int],
                         min_price_cents: int) -> None:
    if price_cents is not None and price_cents < min_price_cents:
        raise ValidationError(
            f"price_cents must be at least {min_price_cents}"
        )
    if inventory is not None and inventory < 0:
        raise ValidationError("inventory must not be negative")
