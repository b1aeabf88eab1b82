from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from orderentry.core.database import get_db
from orderentry.models.entry_schemas import OrderSubmission
from orderentry.services.order_service import OrderService
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("", status_code=201)
async def create_order(submission: OrderSubmission, db: Session = Depends(get_db)):
    """
    Create an order from a header and line items.

    Items are normalized again here: unnamed items are dropped and every
    totalAmount is recomputed. Zero items or a missing header field returns
    422 with all messages and stores nothing.
    """
    order = OrderService(db).create_order(submission.header, submission.items)
    return OrderService.to_dict(order)


@router.put("/{order_id}")
async def update_order(order_id: int, submission: OrderSubmission, db: Session = Depends(get_db)):
    """Replace an order's header and items"""
    order = OrderService(db).update_order(order_id, submission.header, submission.items)
    return OrderService.to_dict(order)


@router.get("/{order_id}")
async def get_order(order_id: int, db: Session = Depends(get_db)):
    return OrderService.to_dict(OrderService(db).get_order(order_id))
