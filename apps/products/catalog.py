"""
Product catalog.

Read-only view of products for the campaign engine. Campaign services never
write products; they only need price and bulk threshold.
"""

from typing import Optional
from uuid import UUID

from django.core.exceptions import ValidationError

from .models import Product


def get_product(product_id: UUID, *, for_update: bool = False) -> Optional[Product]:
    """
    Fetch a product by ID.

    Args:
        product_id: UUID of the product
        for_update: Lock the product row (must be called inside a transaction).
            Used to serialize campaign starts for the same product.

    Returns:
        Product instance, or None if it does not exist
    """
    queryset = Product.objects.all()
    if for_update:
        queryset = queryset.select_for_update()

    try:
        return queryset.get(id=product_id)
    except (Product.DoesNotExist, ValidationError, ValueError):
        return None
