"""Order store adapters.

Typed access to persisted orders. Every write goes through
``compare_and_set``, which only succeeds when the stored version still
equals the version the caller read; there is no blind overwrite.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from orderdesk.domain.entities import Order, OrderItem, Refund
from orderdesk.domain.exceptions import InvalidState, UnknownOrder, VersionConflict
from orderdesk.domain.state_machines import OrderStatus, PaymentStatus, RefundStatus
from orderdesk.infrastructure.models import OrderItemModel, OrderModel, as_utc

logger = structlog.get_logger()


@dataclass(frozen=True)
class OrderFilter:
    """Filter and pagination for order listings."""

    status: OrderStatus | None = None
    payment_status: PaymentStatus | None = None
    refund_status: RefundStatus | None = None
    user_id: str | None = None
    has_refund: bool | None = None
    page: int = 1
    page_size: int = 20

    def matches(self, order: Order) -> bool:
        if self.status is not None and order.status != self.status:
            return False
        if self.payment_status is not None and order.payment_status != self.payment_status:
            return False
        if self.user_id is not None and order.user_id != self.user_id:
            return False
        if self.has_refund is not None and (order.refund is not None) != self.has_refund:
            return False
        if self.refund_status is not None and (
            order.refund is None or order.refund.status != self.refund_status
        ):
            return False
        return True

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


def _check_next_version(order: Order, expected_version: int) -> None:
    if order.version != expected_version + 1:
        raise ValueError(
            f"Order {order.id} snapshot has version {order.version}, "
            f"expected {expected_version + 1} for a write over version {expected_version}"
        )


class OrderStore(ABC):
    """Persistence interface for orders."""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """Persist a newly placed order."""

    @abstractmethod
    async def get(self, order_id: str) -> Order:
        """Load an order.

        Raises:
            UnknownOrder: If no order has this id.
        """

    @abstractmethod
    async def get_by_refund_id(self, refund_id: str) -> Order | None:
        """Find the order holding a gateway refund id."""

    @abstractmethod
    async def list(self, order_filter: OrderFilter | None = None) -> tuple[list[Order], int]:
        """List orders newest first.

        Returns:
            Tuple of (page of orders, total matching).
        """

    @abstractmethod
    async def compare_and_set(self, order: Order, expected_version: int) -> Order:
        """Write ``order`` only if the stored version equals ``expected_version``.

        Args:
            order: Next snapshot, carrying ``expected_version + 1``.
            expected_version: Version the caller read.

        Returns:
            The written order.

        Raises:
            UnknownOrder: If the order does not exist.
            VersionConflict: If the stored version moved on.
        """


# ============================================================================
# In-Memory Store
# ============================================================================


class InMemoryOrderStore(OrderStore):
    """In-memory order store.

    Used for local runs and tests. The lock guards only the compare and the
    write, never any I/O performed by callers.
    """

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._by_refund_id: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def create(self, order: Order) -> Order:
        async with self._lock:
            if order.id in self._orders:
                raise InvalidState(order.id, "order already exists")
            self._orders[order.id] = order
        logger.info(
            "Order created",
            order_id=order.id,
            total=order.total,
            currency=order.currency,
        )
        return order

    async def get(self, order_id: str) -> Order:
        order = self._orders.get(order_id)
        if order is None:
            raise UnknownOrder(order_id)
        return order

    async def get_by_refund_id(self, refund_id: str) -> Order | None:
        order_id = self._by_refund_id.get(refund_id)
        if order_id:
            return self._orders.get(order_id)
        return None

    async def list(self, order_filter: OrderFilter | None = None) -> tuple[list[Order], int]:
        order_filter = order_filter or OrderFilter()
        orders = [o for o in self._orders.values() if order_filter.matches(o)]

        # Sort by created_at descending
        orders.sort(key=lambda o: (o.created_at, o.id), reverse=True)

        total = len(orders)
        start = order_filter.offset
        return orders[start : start + order_filter.page_size], total

    async def compare_and_set(self, order: Order, expected_version: int) -> Order:
        _check_next_version(order, expected_version)
        async with self._lock:
            current = self._orders.get(order.id)
            if current is None:
                raise UnknownOrder(order.id)
            if current.version != expected_version:
                raise VersionConflict(order.id, expected_version, current.version)

            refund_id = order.refund.refund_id if order.refund else None
            if refund_id:
                holder = self._by_refund_id.get(refund_id)
                if holder is not None and holder != order.id:
                    raise InvalidState(
                        order.id,
                        "refund id is already recorded on another order",
                        refund_id=refund_id,
                    )
                self._by_refund_id[refund_id] = order.id

            previous_id = current.refund.refund_id if current.refund else None
            if previous_id and previous_id != refund_id:
                self._by_refund_id.pop(previous_id, None)

            self._orders[order.id] = order
        return order


# ============================================================================
# SQLAlchemy Store
# ============================================================================


def _to_entity(row: OrderModel) -> Order:
    refund = None
    if row.refund_status is not None:
        refund = Refund(
            amount=row.refund_amount,
            reason=row.refund_reason or "",
            attempt=row.refund_attempt,
            idempotency_key=row.refund_idempotency_key,
            status=RefundStatus(row.refund_status),
            refund_id=row.refund_id,
            requested_at=as_utc(row.refund_requested_at),
            resolved_at=as_utc(row.refund_resolved_at),
            dispatch_error=row.refund_dispatch_error,
        )
    return Order(
        id=row.id,
        user_id=row.user_id,
        currency=row.currency,
        items=tuple(
            OrderItem(
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                line_total=item.line_total,
            )
            for item in row.items
        ),
        total=row.total,
        status=OrderStatus(row.status),
        payment_status=PaymentStatus(row.payment_status),
        payment_reference=row.payment_reference,
        refund=refund,
        version=row.version,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _mutable_columns(order: Order) -> dict:
    """Columns a compare-and-set may change. Items, total and currency are fixed."""
    refund = order.refund
    return {
        "status": order.status.value,
        "payment_status": order.payment_status.value,
        "payment_reference": order.payment_reference,
        "refund_id": refund.refund_id if refund else None,
        "refund_amount": refund.amount if refund else None,
        "refund_reason": refund.reason if refund else None,
        "refund_status": refund.status.value if refund else None,
        "refund_attempt": refund.attempt if refund else None,
        "refund_idempotency_key": refund.idempotency_key if refund else None,
        "refund_dispatch_error": refund.dispatch_error if refund else None,
        "refund_requested_at": refund.requested_at if refund else None,
        "refund_resolved_at": refund.resolved_at if refund else None,
        "version": order.version,
        "updated_at": order.updated_at,
    }


class SqlAlchemyOrderStore(OrderStore):
    """Order store backed by the ``orders`` table.

    Compare-and-set is a conditional ``UPDATE ... WHERE id = :id AND
    version = :expected``; zero affected rows means the order is missing or
    was changed by someone else.

    Example usage:
        engine = create_engine()
        store = SqlAlchemyOrderStore(create_session_factory(engine))
        order = await store.get("ord-1")
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, order: Order) -> Order:
        row = OrderModel(
            id=order.id,
            user_id=order.user_id,
            total=order.total,
            currency=order.currency,
            created_at=order.created_at,
            **_mutable_columns(order),
        )
        row.items = [
            OrderItemModel(
                position=position,
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                line_total=item.line_total,
            )
            for position, item in enumerate(order.items)
        ]
        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise InvalidState(order.id, "order already exists") from e
        logger.info(
            "Order created",
            order_id=order.id,
            total=order.total,
            currency=order.currency,
        )
        return order

    async def get(self, order_id: str) -> Order:
        async with self._session_factory() as session:
            result = await session.execute(
                select(OrderModel)
                .options(selectinload(OrderModel.items))
                .where(OrderModel.id == order_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                raise UnknownOrder(order_id)
            return _to_entity(row)

    async def get_by_refund_id(self, refund_id: str) -> Order | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(OrderModel)
                .options(selectinload(OrderModel.items))
                .where(OrderModel.refund_id == refund_id)
            )
            row = result.scalar_one_or_none()
            return _to_entity(row) if row else None

    async def list(self, order_filter: OrderFilter | None = None) -> tuple[list[Order], int]:
        order_filter = order_filter or OrderFilter()
        conditions = []
        if order_filter.status is not None:
            conditions.append(OrderModel.status == order_filter.status.value)
        if order_filter.payment_status is not None:
            conditions.append(OrderModel.payment_status == order_filter.payment_status.value)
        if order_filter.refund_status is not None:
            conditions.append(OrderModel.refund_status == order_filter.refund_status.value)
        if order_filter.user_id is not None:
            conditions.append(OrderModel.user_id == order_filter.user_id)
        if order_filter.has_refund is True:
            conditions.append(OrderModel.refund_status.is_not(None))
        elif order_filter.has_refund is False:
            conditions.append(OrderModel.refund_status.is_(None))

        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(OrderModel).where(*conditions)
            )
            result = await session.execute(
                select(OrderModel)
                .options(selectinload(OrderModel.items))
                .where(*conditions)
                .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
                .offset(order_filter.offset)
                .limit(order_filter.page_size)
            )
            return [_to_entity(row) for row in result.scalars().all()], total or 0

    async def compare_and_set(self, order: Order, expected_version: int) -> Order:
        _check_next_version(order, expected_version)
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    update(OrderModel)
                    .where(
                        OrderModel.id == order.id,
                        OrderModel.version == expected_version,
                    )
                    .values(**_mutable_columns(order))
                )
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise InvalidState(
                    order.id,
                    "refund id is already recorded on another order",
                    refund_id=order.refund.refund_id if order.refund else None,
                ) from e

            if result.rowcount == 1:
                return order

            actual = await session.scalar(
                select(OrderModel.version).where(OrderModel.id == order.id)
            )
            if actual is None:
                raise UnknownOrder(order.id)
            raise VersionConflict(order.id, expected_version, actual)


# ============================================================================
# Store Factory
# ============================================================================

_order_store: OrderStore | None = None


def get_order_store() -> OrderStore:
    """Get the order store singleton.

    Uses the database when ``settings.use_database`` is set, otherwise the
    in-memory store.
    """
    global _order_store
    if _order_store is None:
        from orderdesk.infrastructure.config import settings

        if settings.use_database:
            from orderdesk.infrastructure.database import get_session_factory

            _order_store = SqlAlchemyOrderStore(get_session_factory())
        else:
            _order_store = InMemoryOrderStore()
    return _order_store


def set_order_store(store: OrderStore) -> None:
    """Install a specific store (tests)."""
    global _order_store
    _order_store = store


def reset_order_store() -> None:
    """Reset order store (for testing)."""
    global _order_store
    _order_store = InMemoryOrderStore()
