from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from backoffice.catalog import models as catalog_models
from backoffice.price_lists.application.schemas import (
    PriceListCreate, PriceListEntryCreate, BusinessPartyAssignmentCreate, PriceResolutionRequest,
)
from backoffice.price_lists.constants import PriceApplicationMode, PriceSource, PriceListStatus
from backoffice.price_lists.domain.exceptions import (
    PriceListEntryNotFoundException, PriceListNotActiveException, ProductNotFoundException,
    InvalidPriceRequestException,
)


async def create_list_with_price(service, name, product_id, price, priority=0, **entry_kwargs):
    price_list = await service.create_price_list(PriceListCreate(name=name, priority=priority))
    await service.add_entry(price_list.id, PriceListEntryCreate(product_id=product_id, price=Decimal(price), **entry_kwargs))
    return price_list


@pytest_asyncio.fixture
async def rose(products):
    return products[0]


@pytest.mark.asyncio
async def test_manual_mode_returns_manual_price_without_lookup(resolution_service):
    # Produit inexistant: aucune recherche en mode manuel
    result = await resolution_service.resolve_price(PriceResolutionRequest(
        product_id=4242, application_mode=PriceApplicationMode.MANUAL, manual_price=Decimal("3.50"),
    ))
    assert result.price == Decimal("3.50")
    assert result.source == PriceSource.MANUAL
    assert result.is_price_from_list is False


@pytest.mark.asyncio
async def test_manual_mode_requires_price(resolution_service):
    with pytest.raises(InvalidPriceRequestException):
        await resolution_service.resolve_price(
            PriceResolutionRequest(product_id=1, application_mode=PriceApplicationMode.MANUAL)
        )


@pytest.mark.asyncio
async def test_unknown_product_in_automatic_mode(resolution_service):
    with pytest.raises(ProductNotFoundException):
        await resolution_service.resolve_price(PriceResolutionRequest(product_id=4242))


@pytest.mark.asyncio
async def test_falls_back_to_default_price(resolution_service, rose):
    result = await resolution_service.resolve_price(PriceResolutionRequest(product_id=rose.id))
    assert result.source == PriceSource.DEFAULT_PRICE
    assert result.price == Decimal("10.00")
    assert result.vat_percentage == Decimal("20.00")
    assert result.search_path


@pytest.mark.asyncio
async def test_lower_priority_number_wins(price_list_service, resolution_service, rose):
    await create_list_with_price(price_list_service, "Catalogue", rose.id, "9.00", priority=5)
    promo = await create_list_with_price(price_list_service, "Promo", rose.id, "7.00", priority=1)

    result = await resolution_service.resolve_price(PriceResolutionRequest(product_id=rose.id))
    assert result.source == PriceSource.GENERAL_LIST
    assert result.applied_price_list_id == promo.id
    assert result.price == Decimal("7.00")
    assert len(result.available_price_lists) == 2


@pytest.mark.asyncio
async def test_equal_priority_is_decided_by_entry_score(price_list_service, resolution_service, rose):
    await create_list_with_price(price_list_service, "A", rose.id, "9.00", priority=1, score=10)
    best = await create_list_with_price(price_list_service, "B", rose.id, "9.50", priority=1, score=90)

    result = await resolution_service.resolve_price(PriceResolutionRequest(product_id=rose.id))
    assert result.applied_price_list_id == best.id


@pytest.mark.asyncio
async def test_party_list_beats_general_list(price_list_service, resolution_service, rose, customer):
    await create_list_with_price(price_list_service, "Générale", rose.id, "10.00", priority=0)
    party_list = await create_list_with_price(price_list_service, "Client", rose.id, "8.00", priority=10)
    await price_list_service.assign_business_party(
        party_list.id, BusinessPartyAssignmentCreate(business_party_id=customer.id)
    )

    result = await resolution_service.resolve_price(
        PriceResolutionRequest(product_id=rose.id, business_party_id=customer.id)
    )
    assert result.source == PriceSource.PARTY_LIST
    assert result.price == Decimal("8.00")

    # Sans tiers, la liste assignée n'est pas une liste générale
    anonymous = await resolution_service.resolve_price(PriceResolutionRequest(product_id=rose.id))
    assert anonymous.source == PriceSource.GENERAL_LIST
    assert anonymous.price == Decimal("10.00")


@pytest.mark.asyncio
async def test_party_discount_applies_only_to_discountable_entries(price_list_service, resolution_service, products, customer):
    rose, terreau = products[0], products[1]
    party_list = await create_list_with_price(price_list_service, "Client", rose.id, "10.00")
    await price_list_service.add_entry(
        party_list.id, PriceListEntryCreate(product_id=terreau.id, price=Decimal("20.00"), is_discountable=False)
    )
    await price_list_service.assign_business_party(
        party_list.id,
        BusinessPartyAssignmentCreate(business_party_id=customer.id, global_discount_percentage=Decimal("10")),
    )

    discounted = await resolution_service.resolve_price(
        PriceResolutionRequest(product_id=rose.id, business_party_id=customer.id)
    )
    assert discounted.price == Decimal("9.00")
    assert discounted.original_price == Decimal("10.00")
    assert discounted.applied_discount_percentage == Decimal("10")

    not_discounted = await resolution_service.resolve_price(
        PriceResolutionRequest(product_id=terreau.id, business_party_id=customer.id)
    )
    assert not_discounted.price == Decimal("20.00")
    assert not_discounted.applied_discount_percentage is None


@pytest.mark.asyncio
async def test_quantity_tiers(price_list_service, resolution_service, rose):
    price_list = await create_list_with_price(price_list_service, "Dégressif", rose.id, "10.00", max_quantity=9)
    await price_list_service.add_entry(
        price_list.id, PriceListEntryCreate(product_id=rose.id, price=Decimal("8.00"), min_quantity=10)
    )

    single = await resolution_service.resolve_price(PriceResolutionRequest(product_id=rose.id, quantity=Decimal("1")))
    bulk = await resolution_service.resolve_price(PriceResolutionRequest(product_id=rose.id, quantity=Decimal("25")))
    assert single.price == Decimal("10.00")
    assert bulk.price == Decimal("8.00")


@pytest.mark.asyncio
async def test_currency_mismatch_excludes_list(price_list_service, resolution_service, rose):
    await create_list_with_price(price_list_service, "Dollars", rose.id, "5.00", currency="USD")

    result = await resolution_service.resolve_price(PriceResolutionRequest(product_id=rose.id, currency="EUR"))
    assert result.source == PriceSource.DEFAULT_PRICE


@pytest.mark.asyncio
async def test_inactive_and_out_of_window_lists_are_ignored(price_list_service, resolution_service, rose):
    inactive = await create_list_with_price(price_list_service, "Inactive", rose.id, "1.00")
    await price_list_service.change_status(inactive.id, PriceListStatus.INACTIVE)
    past = datetime.utcnow() - timedelta(days=30)
    old = await price_list_service.create_price_list(
        PriceListCreate(name="Ancienne", valid_from=past, valid_to=past + timedelta(days=5))
    )
    await price_list_service.add_entry(old.id, PriceListEntryCreate(product_id=rose.id, price=Decimal("2.00")))

    result = await resolution_service.resolve_price(PriceResolutionRequest(product_id=rose.id))
    assert result.source == PriceSource.DEFAULT_PRICE

    # À une date de référence dans la fenêtre, l'ancienne liste s'applique
    dated = await resolution_service.resolve_price(
        PriceResolutionRequest(product_id=rose.id, reference_date=past + timedelta(days=1))
    )
    assert dated.applied_price_list_id == old.id


@pytest.mark.asyncio
async def test_reference_date_with_timezone(price_list_service, resolution_service, rose):
    now = datetime.now(timezone.utc)
    price_list = await price_list_service.create_price_list(PriceListCreate(
        name="Semaine", valid_from=now - timedelta(days=5), valid_to=now + timedelta(days=5),
    ))
    await price_list_service.add_entry(price_list.id, PriceListEntryCreate(product_id=rose.id, price=Decimal("7.00")))
    assert price_list.valid_from.tzinfo is None

    result = await resolution_service.resolve_price(PriceResolutionRequest(product_id=rose.id, reference_date=now))
    assert result.applied_price_list_id == price_list.id

    # Deux heures après la fin de validité, exprimé en UTC-3
    late = (now + timedelta(days=5)).astimezone(timezone(timedelta(hours=-3))) + timedelta(hours=2)
    result = await resolution_service.resolve_price(PriceResolutionRequest(product_id=rose.id, reference_date=late))
    assert result.source == PriceSource.DEFAULT_PRICE


@pytest.mark.asyncio
async def test_forced_list_without_entry_fails(price_list_service, resolution_service, products):
    rose, terreau = products[0], products[1]
    forced = await create_list_with_price(price_list_service, "Forcée", terreau.id, "15.00")
    await create_list_with_price(price_list_service, "Générale", rose.id, "9.00")

    with pytest.raises(PriceListEntryNotFoundException):
        await resolution_service.resolve_price(PriceResolutionRequest(
            product_id=rose.id,
            application_mode=PriceApplicationMode.FORCED_PRICE_LIST,
            forced_price_list_id=forced.id,
        ))


@pytest.mark.asyncio
async def test_forced_list_must_be_active(price_list_service, resolution_service, rose):
    forced = await create_list_with_price(price_list_service, "Forcée", rose.id, "15.00", priority=9)
    await price_list_service.change_status(forced.id, PriceListStatus.INACTIVE)
    with pytest.raises(PriceListNotActiveException):
        await resolution_service.resolve_price(PriceResolutionRequest(
            product_id=rose.id,
            application_mode=PriceApplicationMode.FORCED_PRICE_LIST,
            forced_price_list_id=forced.id,
        ))


@pytest.mark.asyncio
async def test_forced_list_overrides_precedence(price_list_service, resolution_service, rose):
    await create_list_with_price(price_list_service, "Prioritaire", rose.id, "5.00", priority=0)
    forced = await create_list_with_price(price_list_service, "Forcée", rose.id, "15.00", priority=9)

    result = await resolution_service.resolve_price(PriceResolutionRequest(
        product_id=rose.id,
        application_mode=PriceApplicationMode.FORCED_PRICE_LIST,
        forced_price_list_id=forced.id,
    ))
    assert result.source == PriceSource.FORCED_LIST
    assert result.price == Decimal("15.00")


@pytest.mark.asyncio
async def test_hybrid_mode_prefers_manual_then_forced(price_list_service, resolution_service, rose):
    forced = await create_list_with_price(price_list_service, "Forcée", rose.id, "15.00")

    manual = await resolution_service.resolve_price(PriceResolutionRequest(
        product_id=rose.id, application_mode=PriceApplicationMode.HYBRID,
        manual_price=Decimal("1.00"), forced_price_list_id=forced.id,
    ))
    assert manual.source == PriceSource.MANUAL

    forced_result = await resolution_service.resolve_price(PriceResolutionRequest(
        product_id=rose.id, application_mode=PriceApplicationMode.HYBRID, forced_price_list_id=forced.id,
    ))
    assert forced_result.source == PriceSource.FORCED_LIST


@pytest.mark.asyncio
async def test_unit_conversion(db_session, price_list_service, resolution_service, rose):
    # Carton de 12 unités de base
    db_session.add(catalog_models.ProductUnit(product_id=rose.id, unit_of_measure_id=2, conversion_factor=Decimal("12")))
    await db_session.commit()
    await create_list_with_price(price_list_service, "Catalogue", rose.id, "2.50")

    result = await resolution_service.resolve_price(PriceResolutionRequest(product_id=rose.id, unit_of_measure_id=2))
    assert result.is_unit_converted is True
    assert result.price == Decimal("30.00")
    assert result.original_unit_of_measure_id == 1
    assert result.unit_of_measure_id == 2


@pytest.mark.asyncio
async def test_results_are_cached_and_invalidated_on_write(price_list_service, resolution_service, cache, rose):
    price_list = await create_list_with_price(price_list_service, "Catalogue", rose.id, "9.00")
    request = PriceResolutionRequest(product_id=rose.id, reference_date=datetime.utcnow())

    first = await resolution_service.resolve_price(request)
    assert len(cache) == 1
    assert (await resolution_service.resolve_price(request)).resolved_at == first.resolved_at

    await price_list_service.add_entry(
        price_list.id, PriceListEntryCreate(product_id=rose.id, price=Decimal("7.00"), score=50)
    )
    assert len(cache) == 0
    assert (await resolution_service.resolve_price(request)).price == Decimal("7.00")
