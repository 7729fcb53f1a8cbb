import asyncio
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError

from backoffice.price_lists.application.schemas import PriceListCreate, PriceListEntryCreate, BulkUpdateRequest
from backoffice.price_lists.constants import BulkOperation, RoundingStrategy
from backoffice.price_lists.domain.exceptions import (
    PriceListNotFoundException, InvalidPriceRequestException, OperationCancelledException,
)


@pytest_asyncio.fixture
async def catalogue(price_list_service, products):
    """Liste avec trois prix: 19.99 et 5.00 (catégorie 1), 30.00 (catégorie 2)."""
    price_list = await price_list_service.create_price_list(PriceListCreate(name="Catalogue"))
    for product, price in zip(products, ("19.99", "5.00", "30.00")):
        await price_list_service.add_entry(
            price_list.id, PriceListEntryCreate(product_id=product.id, price=Decimal(price))
        )
    return price_list


async def current_prices(entry_repo, price_list_id):
    return {e.product_id: e.price for e in await entry_repo.list_for_price_list(price_list_id)}


@pytest.mark.asyncio
async def test_preview_computes_without_side_effects(bulk_service, entry_repo, catalogue, products):
    request = BulkUpdateRequest(
        operation=BulkOperation.PERCENTAGE_INCREASE, value=Decimal("10"),
        rounding_strategy=RoundingStrategy.TO_NEAREST_UNIT,
    )
    before = await current_prices(entry_repo, catalogue.id)
    preview = await bulk_service.preview_bulk_update(catalogue.id, request)

    assert preview.affected_count == 3
    by_product = {item.product_id: item for item in preview.items}
    assert by_product[products[0].id].new_price == Decimal("22.00")
    assert by_product[products[0].id].change_amount == Decimal("22.00") - Decimal("19.99")
    assert await current_prices(entry_repo, catalogue.id) == before


@pytest.mark.asyncio
async def test_apply_matches_preview(bulk_service, entry_repo, catalogue):
    request = BulkUpdateRequest(
        operation=BulkOperation.PERCENTAGE_INCREASE, value=Decimal("10"),
        rounding_strategy=RoundingStrategy.TO_99_CENTS, updated_by="bob",
    )
    preview = await bulk_service.preview_bulk_update(catalogue.id, request)
    result = await bulk_service.apply_bulk_update(catalogue.id, request)

    assert result.rolled_back is False
    assert result.updated_count == 3
    assert result.updated_by == "bob"
    expected = {item.product_id: item.new_price for item in preview.items}
    assert await current_prices(entry_repo, catalogue.id) == expected


@pytest.mark.asyncio
async def test_decrease_is_clamped_at_zero(bulk_service, entry_repo, catalogue, products):
    result = await bulk_service.apply_bulk_update(
        catalogue.id, BulkUpdateRequest(operation=BulkOperation.DECREASE, value=Decimal("10"))
    )
    assert result.updated_count == 3
    prices = await current_prices(entry_repo, catalogue.id)
    assert prices[products[1].id] == Decimal("0")
    assert prices[products[0].id] == Decimal("9.99")


@pytest.mark.asyncio
async def test_filters(bulk_service, catalogue, products):
    by_category = await bulk_service.preview_bulk_update(
        catalogue.id, BulkUpdateRequest(operation=BulkOperation.SET, value=Decimal("1"), category_ids=[1])
    )
    assert {i.product_id for i in by_category.items} == {products[0].id, products[1].id}

    by_price = await bulk_service.preview_bulk_update(
        catalogue.id,
        BulkUpdateRequest(operation=BulkOperation.SET, value=Decimal("1"), min_price=Decimal("10"), max_price=Decimal("25")),
    )
    assert [i.product_id for i in by_price.items] == [products[0].id]

    by_brand = await bulk_service.preview_bulk_update(
        catalogue.id, BulkUpdateRequest(operation=BulkOperation.SET, value=Decimal("1"), brand_ids=[20])
    )
    assert [i.product_id for i in by_brand.items] == [products[2].id]


@pytest.mark.asyncio
async def test_invalid_requests(bulk_service, catalogue):
    with pytest.raises(PriceListNotFoundException):
        await bulk_service.preview_bulk_update(
            999, BulkUpdateRequest(operation=BulkOperation.INCREASE, value=Decimal("1"))
        )
    with pytest.raises(InvalidPriceRequestException):
        await bulk_service.preview_bulk_update(
            catalogue.id,
            BulkUpdateRequest(operation=BulkOperation.INCREASE, value=Decimal("1"), min_price=Decimal("9"), max_price=Decimal("1")),
        )


@pytest.mark.asyncio
async def test_failure_rolls_back_every_item(bulk_service, entry_repo, catalogue, mocker):
    before = await current_prices(entry_repo, catalogue.id)
    original_update_price = entry_repo.update_price
    calls = {"count": 0}

    async def failing_update_price(entry_id, price):
        calls["count"] += 1
        if calls["count"] == 2:
            raise OperationalError("UPDATE price_list_entries", {}, Exception("disk I/O error"))
        return await original_update_price(entry_id, price)

    mocker.patch.object(entry_repo, "update_price", side_effect=failing_update_price)
    result = await bulk_service.apply_bulk_update(
        catalogue.id, BulkUpdateRequest(operation=BulkOperation.INCREASE, value=Decimal("1"))
    )

    assert result.rolled_back is True
    assert result.updated_count == 0
    assert result.failed_count == 3
    assert all(not item.success for item in result.items)
    assert len(result.items) == 3
    assert result.errors
    assert await current_prices(entry_repo, catalogue.id) == before


@pytest.mark.asyncio
async def test_cancelled_apply_leaves_prices_untouched(bulk_service, entry_repo, catalogue):
    before = await current_prices(entry_repo, catalogue.id)
    cancel_event = asyncio.Event()
    cancel_event.set()
    with pytest.raises(OperationCancelledException):
        await bulk_service.apply_bulk_update(
            catalogue.id, BulkUpdateRequest(operation=BulkOperation.INCREASE, value=Decimal("1")), cancel_event
        )
    assert await current_prices(entry_repo, catalogue.id) == before
