from django.db import models
from django.core.validators import MinValueValidator
from decimal import Decimal
import uuid


class Product(models.Model):
    """Supplier product that customers can buy in bulk."""
    
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    description = models.TextField(max_length=1000)
    
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))]
    )
    # Stock the supplier has available
    quantity = models.PositiveIntegerField(default=0)
    # Target quantity for a full campaign
    bulk_threshold = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    
    supplier = models.ForeignKey(
        'accounts.User',
        on_delete=models.CASCADE,
        related_name='products'
    )
    is_approved = models.BooleanField(default=False)
    
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    
    class Meta:
        db_table = 'products'
        indexes = [
            models.Index(fields=['supplier', 'created_at']),
            models.Index(fields=['is_approved']),
        ]
        ordering = ['-created_at']
    
    def __str__(self):
        return f"{self.name} ({self.price})"
