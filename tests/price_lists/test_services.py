from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from backoffice.price_lists.application.schemas import (
    PriceListCreate, PriceListUpdate, PriceListEntryCreate, PriceListEntryUpdate, BusinessPartyAssignmentCreate,
)
from backoffice.price_lists.constants import PriceListStatus, EntryStatus
from backoffice.price_lists.domain.exceptions import (
    PriceListNotFoundException, InvalidQuantityTierException, InvalidStatusTransitionException,
    InvalidDateRangeException, DuplicatePriceListCodeException, DuplicateAssignmentException,
    ProductNotFoundException, BusinessPartyNotFoundException,
)


@pytest.mark.asyncio
async def test_create_price_list_generates_unique_code(price_list_service):
    first = await price_list_service.create_price_list(PriceListCreate(name="Tarif Pros"))
    second = await price_list_service.create_price_list(PriceListCreate(name="Tarif Pros"))
    assert first.code == "TARIF-PROS"
    assert second.code == "TARIF-PROS-1"
    assert first.status == PriceListStatus.ACTIVE


@pytest.mark.asyncio
async def test_create_price_list_with_taken_code_fails(price_list_service):
    await price_list_service.create_price_list(PriceListCreate(name="A", code="TARIF-A"))
    with pytest.raises(DuplicatePriceListCodeException):
        await price_list_service.create_price_list(PriceListCreate(name="B", code="TARIF-A"))


@pytest.mark.asyncio
async def test_create_price_list_rejects_inverted_window(price_list_service):
    now = datetime.utcnow()
    with pytest.raises(InvalidDateRangeException):
        await price_list_service.create_price_list(
            PriceListCreate(name="Inversée", valid_from=now, valid_to=now - timedelta(days=1))
        )


@pytest.mark.asyncio
async def test_update_and_list_price_lists(price_list_service):
    created = await price_list_service.create_price_list(PriceListCreate(name="Tarif Hiver", priority=5))
    await price_list_service.create_price_list(PriceListCreate(name="Tarif Été", priority=1))

    updated = await price_list_service.update_price_list(created.id, PriceListUpdate(priority=0, modified_by="alice"))
    assert updated.priority == 0
    assert updated.modified_by == "alice"

    page = await price_list_service.list_price_lists(limit=10, offset=0, search_term="hiver")
    assert page.total == 1
    assert page.items[0].id == created.id


@pytest.mark.asyncio
async def test_status_transitions(price_list_service):
    created = await price_list_service.create_price_list(PriceListCreate(name="Tarif"))
    expired = await price_list_service.change_status(created.id, PriceListStatus.EXPIRED)
    assert expired.status == PriceListStatus.EXPIRED

    with pytest.raises(InvalidStatusTransitionException):
        await price_list_service.change_status(created.id, PriceListStatus.ACTIVE)

    inactive = await price_list_service.change_status(created.id, PriceListStatus.INACTIVE)
    reactivated = await price_list_service.change_status(inactive.id, PriceListStatus.ACTIVE)
    assert reactivated.status == PriceListStatus.ACTIVE


@pytest.mark.asyncio
async def test_change_status_unknown_list(price_list_service):
    with pytest.raises(PriceListNotFoundException):
        await price_list_service.change_status(999, PriceListStatus.INACTIVE)


@pytest.mark.asyncio
async def test_add_entry_defaults_currency_and_unit(price_list_service, products):
    price_list = await price_list_service.create_price_list(PriceListCreate(name="Tarif"))
    entry = await price_list_service.add_entry(
        price_list.id, PriceListEntryCreate(product_id=products[0].id, price=Decimal("8.50"))
    )
    assert entry.currency == "EUR"
    assert entry.unit_of_measure_id == products[0].unit_of_measure_id
    assert entry.price == Decimal("8.50")


@pytest.mark.asyncio
async def test_add_entry_validations(price_list_service, products):
    price_list = await price_list_service.create_price_list(PriceListCreate(name="Tarif"))
    with pytest.raises(InvalidQuantityTierException):
        await price_list_service.add_entry(
            price_list.id,
            PriceListEntryCreate(product_id=products[0].id, price=Decimal("1"), min_quantity=10, max_quantity=5),
        )
    with pytest.raises(ProductNotFoundException):
        await price_list_service.add_entry(price_list.id, PriceListEntryCreate(product_id=4242, price=Decimal("1")))
    with pytest.raises(PriceListNotFoundException):
        await price_list_service.add_entry(999, PriceListEntryCreate(product_id=products[0].id, price=Decimal("1")))


@pytest.mark.asyncio
async def test_update_and_deactivate_entry(price_list_service, products):
    price_list = await price_list_service.create_price_list(PriceListCreate(name="Tarif"))
    entry = await price_list_service.add_entry(
        price_list.id, PriceListEntryCreate(product_id=products[0].id, price=Decimal("8.50"))
    )
    updated = await price_list_service.update_entry(entry.id, PriceListEntryUpdate(price=Decimal("9.00"), score=80))
    assert updated.price == Decimal("9.00")
    assert updated.score == 80

    deactivated = await price_list_service.deactivate_entry(entry.id)
    assert deactivated.status == EntryStatus.INACTIVE
    assert await price_list_service.list_entries(price_list.id, only_active=True) == []
    assert len(await price_list_service.list_entries(price_list.id)) == 1


@pytest.mark.asyncio
async def test_assign_and_remove_business_party(price_list_service, customer):
    price_list = await price_list_service.create_price_list(PriceListCreate(name="Tarif client"))
    assignment = await price_list_service.assign_business_party(
        price_list.id,
        BusinessPartyAssignmentCreate(business_party_id=customer.id, global_discount_percentage=Decimal("5")),
    )
    assert assignment.business_party_id == customer.id

    with pytest.raises(DuplicateAssignmentException):
        await price_list_service.assign_business_party(
            price_list.id, BusinessPartyAssignmentCreate(business_party_id=customer.id)
        )

    lists = await price_list_service.list_price_lists_for_party(customer.id)
    assert [pl.id for pl in lists] == [price_list.id]

    assert await price_list_service.remove_business_party(price_list.id, customer.id) is True
    assert await price_list_service.remove_business_party(price_list.id, customer.id) is False
    assert await price_list_service.list_assignments(price_list.id) == []
    assert await price_list_service.list_price_lists_for_party(customer.id) == []


@pytest.mark.asyncio
async def test_assign_unknown_business_party(price_list_service):
    price_list = await price_list_service.create_price_list(PriceListCreate(name="Tarif"))
    with pytest.raises(BusinessPartyNotFoundException):
        await price_list_service.assign_business_party(price_list.id, BusinessPartyAssignmentCreate(business_party_id=77))


@pytest.mark.asyncio
async def test_assignment_window_must_fit_list_window(price_list_service, customer):
    now = datetime.utcnow()
    price_list = await price_list_service.create_price_list(
        PriceListCreate(name="Tarif", valid_from=now, valid_to=now + timedelta(days=30))
    )
    with pytest.raises(InvalidDateRangeException):
        await price_list_service.assign_business_party(
            price_list.id,
            BusinessPartyAssignmentCreate(business_party_id=customer.id, specific_valid_from=now - timedelta(days=1)),
        )
