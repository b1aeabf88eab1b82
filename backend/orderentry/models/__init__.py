# Export all table models so Base.metadata sees them
from orderentry.models.template import OrderTemplate, TemplateVersion
from orderentry.models.order import PurchaseOrder, PurchaseOrderItem

__all__ = [
    "OrderTemplate",
    "TemplateVersion",
    "PurchaseOrder",
    "PurchaseOrderItem",
]
