"""
Order Service

The submission boundary. Whatever the client sends, items are normalized
again here (names required, numbers coerced, totals recomputed) and the
header is checked before anything touches the database. Every problem is
reported at once through a single SubmissionValidationError.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from sqlalchemy.orm import Session

from orderentry.core.exceptions import NotFoundError, SubmissionValidationError
from orderentry.models.entry_schemas import GeneralTemplate, OrderHeader, OrderLineItem
from orderentry.models.order import PurchaseOrder, PurchaseOrderItem
from orderentry.models.template import OrderTemplate
from orderentry.services.line_items import (
    AT_LEAST_ONE_ITEM,
    missing_required_fields,
    normalize_submitted_items,
    order_total,
    positivity_errors,
)
from orderentry.services.template_dispatcher import load_definition

logger = logging.getLogger(__name__)

ORDER_NUMBER_PREFIX = "PO"

SubmittedItem = Union[OrderLineItem, Mapping[str, Any]]


class OrderService:
    """Creates and updates purchase orders from normalized line items."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def header_errors(self, header: OrderHeader) -> List[str]:
        errors = []
        if header.project_id is None:
            errors.append("Select a project")
        if header.vendor_id is None:
            errors.append("Select a vendor")
        if header.order_date is None:
            errors.append("Select an order date")
        if header.delivery_date and header.order_date and header.delivery_date < header.order_date:
            errors.append("Delivery date cannot be before the order date")

        if header.template_id is not None:
            template = self.db.query(OrderTemplate).filter(OrderTemplate.id == header.template_id).first()
            if template is None:
                errors.append(f"Template {header.template_id} does not exist")
            else:
                definition = load_definition(template)
                if isinstance(definition, GeneralTemplate):
                    for label in missing_required_fields(header.custom_fields or {}, definition.fields):
                        errors.append(f"Enter {label}")
        return errors

    def prepare_items(self, items: Sequence[SubmittedItem]) -> List[OrderLineItem]:
        raw = [
            item.model_dump(by_alias=True) if isinstance(item, OrderLineItem) else item
            for item in items
        ]
        return normalize_submitted_items(raw)

    def validate_submission(self, header: OrderHeader, items: Sequence[SubmittedItem]) -> List[OrderLineItem]:
        """
        Check an order before it is stored.

        Returns:
            The normalized line items

        Raises:
            SubmissionValidationError: with every header and item problem found
        """
        line_items = self.prepare_items(items)
        errors = self.header_errors(header)
        if not line_items:
            errors.append(AT_LEAST_ONE_ITEM)
        errors.extend(positivity_errors(line_items))

        if errors:
            logger.warning(f"Order submission blocked: {'; '.join(errors)}")
            raise SubmissionValidationError(errors)
        return line_items

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _next_order_number(self, order_date: date) -> str:
        prefix = f"{ORDER_NUMBER_PREFIX}-{order_date.strftime('%Y%m%d')}-"
        numbers = self.db.query(PurchaseOrder.order_number).filter(
            PurchaseOrder.order_number.like(f"{prefix}%")
        ).all()

        highest = 0
        for (number,) in numbers:
            suffix = number[len(prefix):]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
        return f"{prefix}{highest + 1:03d}"

    def _build_items(self, line_items: Sequence[OrderLineItem]) -> List[PurchaseOrderItem]:
        return [
            PurchaseOrderItem(
                item_name=item.item_name,
                specification=item.specification,
                unit=item.unit,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_amount=item.total_amount,
                notes=item.notes,
            )
            for item in line_items
        ]

    def create_order(self, header: OrderHeader, items: Sequence[SubmittedItem]) -> PurchaseOrder:
        line_items = self.validate_submission(header, items)

        order = PurchaseOrder(
            order_number=self._next_order_number(header.order_date),
            project_id=header.project_id,
            vendor_id=header.vendor_id,
            template_id=header.template_id,
            order_date=header.order_date,
            delivery_date=header.delivery_date,
            notes=header.notes,
            custom_fields=header.custom_fields,
            total_amount=order_total(line_items),
            items=self._build_items(line_items),
        )
        self.db.add(order)
        self.db.commit()
        self.db.refresh(order)

        logger.info(f"Created order {order.order_number} with {len(line_items)} items, total {order.total_amount}")
        return order

    def update_order(self, order_id: int, header: OrderHeader, items: Sequence[SubmittedItem]) -> PurchaseOrder:
        """Replace an order's header and items. The order number is kept."""
        order = self.get_order(order_id)
        line_items = self.validate_submission(header, items)

        order.project_id = header.project_id
        order.vendor_id = header.vendor_id
        order.template_id = header.template_id
        order.order_date = header.order_date
        order.delivery_date = header.delivery_date
        order.notes = header.notes
        order.custom_fields = header.custom_fields
        order.total_amount = order_total(line_items)
        order.items = self._build_items(line_items)

        self.db.commit()
        self.db.refresh(order)

        logger.info(f"Updated order {order.order_number}: {len(line_items)} items, total {order.total_amount}")
        return order

    def get_order(self, order_id: int) -> PurchaseOrder:
        order = self.db.query(PurchaseOrder).filter(PurchaseOrder.id == order_id).first()
        if not order:
            raise NotFoundError("Order", str(order_id))
        return order

    @staticmethod
    def to_dict(order: PurchaseOrder) -> Dict[str, Any]:
        return {
            "id": order.id,
            "orderNumber": order.order_number,
            "projectId": order.project_id,
            "vendorId": order.vendor_id,
            "templateId": order.template_id,
            "orderDate": order.order_date.isoformat() if order.order_date else None,
            "deliveryDate": order.delivery_date.isoformat() if order.delivery_date else None,
            "status": order.status,
            "totalAmount": order.total_amount,
            "notes": order.notes,
            "customFields": order.custom_fields,
            "items": [
                {
                    "id": item.id,
                    "itemName": item.item_name,
                    "specification": item.specification or "",
                    "unit": item.unit or "",
                    "quantity": item.quantity,
                    "unitPrice": item.unit_price,
                    "totalAmount": item.total_amount,
                    "notes": item.notes or "",
                }
                for item in order.items
            ],
        }


def merge_header(header: OrderHeader, custom_fields: Optional[Dict[str, Any]], template_id: Optional[int]) -> OrderHeader:
    """Attach a session's custom-field bag and template to a submitted header."""
    updates: Dict[str, Any] = {}
    if custom_fields:
        updates["custom_fields"] = {**custom_fields, **(header.custom_fields or {})}
    if header.template_id is None and template_id is not None:
        updates["template_id"] = template_id
    return header.model_copy(update=updates) if updates else header
