"""
In-app Notification Service

Writes notification rows for staff users. Delivery is best-effort: a
failure here must never undo the order change that triggered it, so every
send runs in its own savepoint and errors are logged and dropped.
"""
import logging
from typing import Optional, List, Dict, Any
from enum import Enum
import uuid

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.config import settings
from fulfillment.core.permissions import Role
from fulfillment.models.notification import Notification
from fulfillment.models.order import Order, OrderStatus
from fulfillment.models.user import User


logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    """Severity shown in the notification centre."""
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    INFO = "INFO"


ORDER_STATUS_TITLES = {
    OrderStatus.NEW: "Order Created",
    OrderStatus.AWAITING_ALLOC: "Order Awaiting Allocation",
    OrderStatus.DISPATCHED: "Order Dispatched",
    OrderStatus.ASSIGNED_TO_LOGISTICS: "Order Dispatched",
    OrderStatus.PICKED_UP: "Order Picked Up",
    OrderStatus.DELIVERING: "Order Delivering",
    OrderStatus.DELIVERED: "Order Delivered",
    OrderStatus.RETURNED: "Order Returned",
    OrderStatus.CANCELED: "Order Canceled",
    OrderStatus.ON_HOLD: "Order On Hold",
}

ORDER_STATUS_MESSAGES = {
    OrderStatus.NEW: "Order #{reference} has been created and is now active.",
    OrderStatus.AWAITING_ALLOC: "Order #{reference} is awaiting allocation to a warehouse or logistics provider.",
    OrderStatus.DISPATCHED: "Order #{reference} has been dispatched for delivery.",
    OrderStatus.ASSIGNED_TO_LOGISTICS: "Order #{reference} has been dispatched for delivery.",
    OrderStatus.PICKED_UP: "Order #{reference} has been picked up by logistics.",
    OrderStatus.DELIVERING: "Order #{reference} is currently out for delivery.",
    OrderStatus.DELIVERED: "Order #{reference} has been delivered to the customer.",
    OrderStatus.RETURNED: "Order #{reference} has been returned to the warehouse.",
    OrderStatus.CANCELED: "Order #{reference} has been canceled.",
    OrderStatus.ON_HOLD: "Order #{reference} is currently on hold.",
}


class NotificationService:
    """Creates in-app notifications for merchant and logistics users."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def notify(
        self,
        user_id: uuid.UUID,
        title: str,
        message: str,
        notification_type: NotificationType = NotificationType.INFO,
        link_url: Optional[str] = None,
        template_id: Optional[str] = None,
        template_data: Optional[Dict[str, Any]] = None,
        created_by: Optional[uuid.UUID] = None,
    ) -> Optional[Notification]:
        """
        Send one notification. Returns None when disabled or when the write
        failed; never raises.
        """
        if not settings.NOTIFICATIONS_ENABLED:
            return None

        try:
            async with self.db.begin_nested():
                notification = Notification(
                    user_id=user_id,
                    title=title,
                    message=message,
                    notification_type=notification_type.value,
                    link_url=link_url,
                    template_id=template_id,
                    template_data=template_data,
                    created_by_id=created_by,
                )
                self.db.add(notification)
                await self.db.flush()
        except Exception as e:
            logger.warning(f"Failed to create notification for user {user_id}: {e}")
            return None

        logger.info(f"[NOTIFICATION] {notification_type.value} to {user_id}: {title}")
        return notification

    async def notify_order_status(
        self,
        order: Order,
        created_by: Optional[uuid.UUID] = None,
    ) -> List[Notification]:
        """Tell every merchant user of the order's business about its new status."""
        try:
            status = OrderStatus(order.status)
        except ValueError:
            status = None

        reference = order.reference
        title = ORDER_STATUS_TITLES.get(status, "Order Status Updated")
        message = ORDER_STATUS_MESSAGES.get(
            status, "Order #{reference} status updated to {status}."
        ).format(reference=reference, status=order.status)

        if status == OrderStatus.DELIVERED:
            notification_type = NotificationType.SUCCESS
        elif status == OrderStatus.CANCELED:
            notification_type = NotificationType.ERROR
        else:
            notification_type = NotificationType.INFO

        try:
            result = await self.db.execute(
                select(User.id).where(
                    User.business_id == order.merchant_id,
                    User.role.in_([Role.MERCHANT.value, Role.MERCHANT_STAFF.value]),
                    User.is_active == True,
                )
            )
            recipients = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.warning(f"Could not load merchant users for order {order.id}: {e}")
            return []

        sent = []
        for user_id in recipients:
            notification = await self.notify(
                user_id=user_id,
                title=title,
                message=message,
                notification_type=notification_type,
                link_url=f"/merchant/orders/{order.id}",
                template_id="order_status",
                template_data={"reference": reference, "status": order.status},
                created_by=created_by,
            )
            if notification is not None:
                sent.append(notification)
        return sent

    async def notify_logistics_assignment(
        self,
        order: Order,
        logistics_id: uuid.UUID,
        created_by: Optional[uuid.UUID] = None,
    ) -> Optional[Notification]:
        """Tell the logistics user an order was assigned to them."""
        return await self.notify(
            user_id=logistics_id,
            title="New Order Assigned",
            message=f"Order #{order.reference} has been assigned to you for delivery.",
            link_url=f"/logistics/orders/{order.id}",
            template_id="order_assigned",
            template_data={"reference": order.reference},
            created_by=created_by,
        )
