from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient

PRICE_LISTS_API_PREFIX = "/api/v1/price-lists"  # Préfixe tel que monté dans main.py


async def create_price_list(client: AsyncClient, **payload) -> dict:
    response = await client.post(PRICE_LISTS_API_PREFIX, json=payload)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_health(test_client: AsyncClient):
    response = await test_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_create_get_and_list(test_client: AsyncClient):
    """Teste la création, la lecture et la liste paginée."""
    created = await create_price_list(test_client, name="Tarif Été 2024", is_default=True)
    assert created["code"] == "TARIF-ETE-2024"
    assert created["status"] == "Active"

    response = await test_client.get(f"{PRICE_LISTS_API_PREFIX}/{created['id']}")
    assert response.status_code == 200
    assert response.json()["name"] == "Tarif Été 2024"

    await create_price_list(test_client, name="Tarif Hiver")
    response = await test_client.get(PRICE_LISTS_API_PREFIX, params={"q": "hiver"})
    assert response.status_code == 200
    page = response.json()
    assert page["total"] == 1
    assert page["items"][0]["name"] == "Tarif Hiver"


@pytest.mark.asyncio
async def test_error_categories_map_to_status_codes(test_client: AsyncClient):
    # Introuvable
    response = await test_client.get(f"{PRICE_LISTS_API_PREFIX}/999")
    assert response.status_code == 404
    response = await test_client.post(f"{PRICE_LISTS_API_PREFIX}/999/entries", json={"product_id": 1, "price": "1.00"})
    assert response.status_code == 404

    # Conflit
    await create_price_list(test_client, name="Catalogue", code="CAT")
    response = await test_client.post(PRICE_LISTS_API_PREFIX, json={"name": "Autre", "code": "CAT"})
    assert response.status_code == 409

    # Validation
    response = await test_client.post(PRICE_LISTS_API_PREFIX, json={
        "name": "Fenêtre inversée", "valid_from": "2024-06-01T00:00:00", "valid_to": "2024-01-01T00:00:00",
    })
    assert response.status_code == 400

    # Schéma invalide
    response = await test_client.post(PRICE_LISTS_API_PREFIX, json={"name": ""})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_status_transition_endpoint(test_client: AsyncClient):
    created = await create_price_list(test_client, name="Saison")
    url = f"{PRICE_LISTS_API_PREFIX}/{created['id']}/status"

    response = await test_client.post(url, json={"status": "Expired", "modified_by": "carol"})
    assert response.status_code == 200
    assert response.json()["status"] == "Expired"

    response = await test_client.post(url, json={"status": "Active"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_entries_and_resolution(test_client: AsyncClient, products):
    rose = products[0]
    created = await create_price_list(test_client, name="Catalogue")
    response = await test_client.post(
        f"{PRICE_LISTS_API_PREFIX}/{created['id']}/entries", json={"product_id": rose.id, "price": "8.50"}
    )
    assert response.status_code == 201
    entry = response.json()

    response = await test_client.post(f"{PRICE_LISTS_API_PREFIX}/resolve", json={"product_id": rose.id})
    assert response.status_code == 200
    result = response.json()
    assert result["source"] == "GeneralList"
    assert Decimal(result["price"]) == Decimal("8.50")
    assert result["applied_price_list_id"] == created["id"]

    # Désactivation: retour au prix par défaut du produit
    response = await test_client.delete(f"{PRICE_LISTS_API_PREFIX}/entries/{entry['id']}")
    assert response.status_code == 200
    assert response.json()["status"] == "Inactive"
    response = await test_client.post(f"{PRICE_LISTS_API_PREFIX}/resolve", json={"product_id": rose.id})
    assert response.json()["source"] == "DefaultPrice"

    response = await test_client.post(f"{PRICE_LISTS_API_PREFIX}/resolve", json={"product_id": 4242})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_validation_endpoint(test_client: AsyncClient):
    response = await test_client.get(f"{PRICE_LISTS_API_PREFIX}/validation")
    assert response.status_code == 200
    assert response.json()["is_valid"] is False

    await create_price_list(test_client, name="Catalogue", is_default=True)
    response = await test_client.get(f"{PRICE_LISTS_API_PREFIX}/validation")
    assert response.json()["is_valid"] is True


@pytest.mark.asyncio
async def test_business_party_routes(test_client: AsyncClient, customer):
    created = await create_price_list(test_client, name="Client fidèle")
    url = f"{PRICE_LISTS_API_PREFIX}/{created['id']}/business-parties"

    response = await test_client.post(url, json={"business_party_id": customer.id, "global_discount_percentage": "5"})
    assert response.status_code == 201
    response = await test_client.post(url, json={"business_party_id": customer.id})
    assert response.status_code == 409

    response = await test_client.get(f"{PRICE_LISTS_API_PREFIX}/business-parties/{customer.id}/price-lists")
    assert response.status_code == 200
    assert [pl["id"] for pl in response.json()] == [created["id"]]

    response = await test_client.delete(f"{url}/{customer.id}")
    assert response.status_code == 204
    response = await test_client.delete(f"{url}/{customer.id}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_bulk_update_preview_and_apply(test_client: AsyncClient, products):
    created = await create_price_list(test_client, name="Catalogue")
    await test_client.post(
        f"{PRICE_LISTS_API_PREFIX}/{created['id']}/entries", json={"product_id": products[1].id, "price": "19.99"}
    )
    payload = {"operation": "PercentageIncrease", "value": "10", "rounding_strategy": "ToNearestUnit"}

    response = await test_client.post(f"{PRICE_LISTS_API_PREFIX}/{created['id']}/bulk-update/preview", json=payload)
    assert response.status_code == 200
    assert Decimal(response.json()["items"][0]["new_price"]) == Decimal("22.00")

    response = await test_client.post(f"{PRICE_LISTS_API_PREFIX}/{created['id']}/bulk-update", json=payload)
    assert response.status_code == 200
    assert response.json()["updated_count"] == 1

    response = await test_client.get(f"{PRICE_LISTS_API_PREFIX}/{created['id']}/entries")
    assert Decimal(response.json()[0]["price"]) == Decimal("22.00")


@pytest.mark.asyncio
async def test_generation_duplication_and_apply(test_client: AsyncClient, products):
    response = await test_client.post(
        f"{PRICE_LISTS_API_PREFIX}/generate/from-products", json={"name": "Tarif généré", "markup_percentage": "20"}
    )
    assert response.status_code == 201
    generated = response.json()
    list_id = generated["price_list"]["id"]
    assert generated["products_generated"] == 2

    response = await test_client.get(f"{PRICE_LISTS_API_PREFIX}/{list_id}/generation-metadata")
    assert response.status_code == 200
    assert response.json()["generation_source"] == "Products"

    response = await test_client.post(f"{PRICE_LISTS_API_PREFIX}/{list_id}/duplicate", json={"new_name": "Copie"})
    assert response.status_code == 201
    assert response.json()["copied_price_count"] == 2

    response = await test_client.post(
        f"{PRICE_LISTS_API_PREFIX}/{list_id}/apply-to-products",
        json={"only_update_if_higher": True, "only_update_if_lower": True},
    )
    assert response.status_code == 409

    response = await test_client.post(f"{PRICE_LISTS_API_PREFIX}/{list_id}/apply-to-products", json={})
    assert response.status_code == 200
    assert response.json()["products_updated"] == 2


@pytest.mark.asyncio
async def test_resolution_accepts_utc_suffixed_dates(test_client: AsyncClient, products):
    rose = products[0]
    now = datetime.utcnow()
    created = await create_price_list(
        test_client, name="Semaine",
        valid_from=f"{(now - timedelta(days=5)):%Y-%m-%dT%H:%M:%S}Z", valid_to=f"{(now + timedelta(days=5)):%Y-%m-%dT%H:%M:%S}Z",
    )
    await test_client.post(f"{PRICE_LISTS_API_PREFIX}/{created['id']}/entries", json={"product_id": rose.id, "price": "7.00"})

    response = await test_client.post(
        f"{PRICE_LISTS_API_PREFIX}/resolve", json={"product_id": rose.id, "reference_date": f"{now:%Y-%m-%dT%H:%M:%S}Z"}
    )
    assert response.status_code == 200, response.text
    assert response.json()["applied_price_list_id"] == created["id"]

    response = await test_client.post(
        f"{PRICE_LISTS_API_PREFIX}/resolve",
        json={"product_id": rose.id, "reference_date": f"{(now + timedelta(days=6)):%Y-%m-%dT%H:%M:%S}+02:00"},
    )
    assert response.status_code == 200, response.text
    assert response.json()["source"] == "DefaultPrice"
