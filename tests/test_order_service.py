"""Tests for order placement and order reads."""

import asyncio

import pytest
from sqlalchemy import func, select

from storefront.exceptions import (
    DuplicateOrderError,
    InsufficientStockError,
    InvalidInputError,
    OrderNotFoundError,
    OrderNumberCollisionError,
    ProductNotFoundError,
)
from storefront.models.order import Order, OrderStatus
from storefront.models.product import Product
from storefront.services import order_service
from tests.helpers import stock_of


async def order_count(session_factory, **filters) -> int:
    async with session_factory() as session:
        conditions = [getattr(Order, key) == value for key, value in filters.items()]
        return await session.scalar(select(func.count()).select_from(Order).where(*conditions))


class TestCreateOrder:
    """Tests for create_order."""

    @pytest.mark.asyncio
    async def test_creates_pending_order_and_reserves_stock(self, db, session_factory, make_product):
        product_id = await make_product(price=15000, stock=10)

        order = await order_service.create_order(db, user_id=1, product_id=product_id, quantity=2)

        assert order.id is not None
        assert order.status == OrderStatus.PENDING
        assert order.total_price == 30000
        assert order.order_no
        assert await stock_of(session_factory, product_id) == 8

    @pytest.mark.asyncio
    async def test_total_price_is_frozen_at_order_time(self, db, session_factory, make_product):
        product_id = await make_product(price=15000, stock=10)
        order = await order_service.create_order(db, 1, product_id, 1)

        async with session_factory() as session:
            product = await session.get(Product, product_id)
            product.price = 99000
            await session.commit()

        async with session_factory() as session:
            reloaded = await session.get(Order, order.id)
        assert reloaded.total_price == 15000

    @pytest.mark.asyncio
    async def test_order_numbers_are_unique(self, session_factory, make_product):
        product_id = await make_product(stock=10)

        numbers = set()
        for user_id in (1, 2, 3):
            async with session_factory() as session:
                order = await order_service.create_order(session, user_id, product_id, 1)
                numbers.add(order.order_no)

        assert len(numbers) == 3

    @pytest.mark.asyncio
    async def test_rejects_non_positive_quantity(self, db, make_product):
        product_id = await make_product()

        with pytest.raises(InvalidInputError):
            await order_service.create_order(db, 1, product_id, 0)

    @pytest.mark.asyncio
    async def test_unknown_product(self, db):
        with pytest.raises(ProductNotFoundError):
            await order_service.create_order(db, 1, 404, 1)

    @pytest.mark.asyncio
    async def test_deleted_product(self, db, make_product):
        product_id = await make_product(is_deleted=True)

        with pytest.raises(ProductNotFoundError):
            await order_service.create_order(db, 1, product_id, 1)

    @pytest.mark.asyncio
    async def test_insufficient_stock_leaves_no_trace(self, db, session_factory, make_product):
        product_id = await make_product(stock=1)

        with pytest.raises(InsufficientStockError):
            await order_service.create_order(db, 1, product_id, 2)

        assert await stock_of(session_factory, product_id) == 1
        assert await order_count(session_factory, product_id=product_id) == 0

    @pytest.mark.asyncio
    async def test_second_active_order_is_rejected(self, session_factory, make_product):
        product_id = await make_product(stock=10)
        async with session_factory() as session:
            await order_service.create_order(session, 1, product_id, 1)

        async with session_factory() as session:
            with pytest.raises(DuplicateOrderError):
                await order_service.create_order(session, 1, product_id, 1)

        assert await stock_of(session_factory, product_id) == 9

    @pytest.mark.asyncio
    async def test_failed_order_does_not_block_reordering(self, session_factory, make_product):
        product_id = await make_product(stock=10)
        async with session_factory() as session:
            first = await order_service.create_order(session, 1, product_id, 1)
            await order_service.transition_status(
                session, first.id, (OrderStatus.PENDING,), OrderStatus.FAILED
            )
            await session.commit()

        async with session_factory() as session:
            second = await order_service.create_order(session, 1, product_id, 1)

        assert second.id != first.id
        assert second.status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_last_unit_goes_to_exactly_one_buyer(self, session_factory, make_product):
        """Two users race for a product with a single unit left."""
        product_id = await make_product(stock=1)

        async def place(user_id: int):
            async with session_factory() as session:
                try:
                    return await order_service.create_order(session, user_id, product_id, 1)
                except InsufficientStockError as exc:
                    return exc

        results = await asyncio.gather(place(1), place(2))

        orders = [r for r in results if isinstance(r, Order)]
        failures = [r for r in results if isinstance(r, InsufficientStockError)]
        assert len(orders) == 1
        assert len(failures) == 1
        assert await stock_of(session_factory, product_id) == 0
        assert await order_count(session_factory, product_id=product_id) == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_from_same_user(self, session_factory, make_product):
        product_id = await make_product(stock=10)

        async def place():
            async with session_factory() as session:
                try:
                    return await order_service.create_order(session, 7, product_id, 1)
                except DuplicateOrderError as exc:
                    return exc

        results = await asyncio.gather(place(), place())

        assert sum(isinstance(r, Order) for r in results) == 1
        assert sum(isinstance(r, DuplicateOrderError) for r in results) == 1
        assert await stock_of(session_factory, product_id) == 9
        assert await order_count(session_factory, user_id=7) == 1

    @pytest.mark.asyncio
    async def test_order_number_collision_rolls_back_stock(
        self, session_factory, make_product, monkeypatch
    ):
        product_id = await make_product(stock=10)
        monkeypatch.setattr(order_service, "generate_order_no", lambda: "fixed-order-no")
        async with session_factory() as session:
            await order_service.create_order(session, 1, product_id, 1)

        async with session_factory() as session:
            with pytest.raises(OrderNumberCollisionError):
                await order_service.create_order(session, 2, product_id, 1)

        assert await stock_of(session_factory, product_id) == 9
        assert await order_count(session_factory, user_id=2) == 0


class TestOrderReads:
    """Tests for order detail and listing."""

    @pytest.mark.asyncio
    async def test_detail_for_owner(self, session_factory, make_product):
        product_id = await make_product(name="Busan night cruise", price=5000)
        async with session_factory() as session:
            order = await order_service.create_order(session, 1, product_id, 3)

        async with session_factory() as session:
            detail = await order_service.get_order_detail(session, order.id, 1)

        assert detail.order_no == order.order_no
        assert detail.product_name == "Busan night cruise"
        assert detail.total_price == 15000
        assert detail.status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_detail_hidden_from_other_users(self, session_factory, make_product):
        product_id = await make_product()
        async with session_factory() as session:
            order = await order_service.create_order(session, 1, product_id, 1)

        async with session_factory() as session:
            with pytest.raises(OrderNotFoundError):
                await order_service.get_order_detail(session, order.id, 2)

    @pytest.mark.asyncio
    async def test_lookup_by_order_no(self, session_factory, make_product):
        product_id = await make_product()
        async with session_factory() as session:
            order = await order_service.create_order(session, 1, product_id, 1)

        async with session_factory() as session:
            found = await order_service.get_order_by_order_no(session, order.order_no)
            assert found.id == order.id
            with pytest.raises(OrderNotFoundError):
                await order_service.get_order_by_order_no(session, "no-such-order")

    @pytest.mark.asyncio
    async def test_list_filters_by_user_and_status(self, session_factory, make_product):
        first = await make_product(name="A")
        second = await make_product(name="B")
        third = await make_product(name="C")
        async with session_factory() as session:
            await order_service.create_order(session, 1, first, 1)
            failed = await order_service.create_order(session, 1, second, 1)
            await order_service.create_order(session, 2, third, 1)
            await order_service.transition_status(
                session, failed.id, (OrderStatus.PENDING,), OrderStatus.FAILED
            )
            await session.commit()

        async with session_factory() as session:
            everything = await order_service.list_orders(session, 1)
            pending = await order_service.list_orders(session, 1, OrderStatus.PENDING)
            paged = await order_service.list_orders(session, 1, page=1, size=1)

        assert everything.total == 2
        assert {item.product_name for item in everything.items} == {"A", "B"}
        assert pending.total == 1
        assert pending.items[0].product_name == "A"
        assert paged.total == 2
        assert len(paged.items) == 1
