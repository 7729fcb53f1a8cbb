# Standard Library
import os
from datetime import datetime, timedelta
from decimal import Decimal
from typing import AsyncGenerator

# Base en mémoire pour toute la session de tests (avant l'import de l'application)
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# Third-Party Libraries
import pytest
import pytest_asyncio

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, AsyncEngine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

# First-Party Libraries
from backoffice.main import app
from backoffice.database import get_db_session
from backoffice.catalog import models as catalog_models
from backoffice.catalog.infrastructure.persistence import (
    SQLAlchemyCatalogFactsProvider, SQLAlchemyDocumentHistoryProvider
)
from backoffice.price_lists import models as price_list_models  # noqa: F401
from backoffice.price_lists.application.cache import PriceResolutionCache
from backoffice.price_lists.application.services import PriceListService
from backoffice.price_lists.application.resolver import PriceResolutionService
from backoffice.price_lists.application.validator import PrecedenceValidationService
from backoffice.price_lists.application.bulk_update import BulkUpdateService
from backoffice.price_lists.application.generator import PriceListGenerationService
from backoffice.price_lists.application.duplicator import PriceListDuplicationService
from backoffice.price_lists.infrastructure.persistence import (
    SQLAlchemyPriceListRepository, SQLAlchemyPriceListEntryRepository,
    SQLAlchemyBusinessPartyAssignmentRepository, SQLAlchemyGenerationMetadataRepository,
    SQLAlchemyPriceAuditRepository,
)
from backoffice.price_lists.interfaces.dependencies import get_resolution_cache

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# --- Fixtures de Base ---

@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Crée un engine, des tables, et fournit une session DB en mémoire pour chaque test."""
    engine: AsyncEngine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    TestingSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with TestingSessionLocal() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def cache() -> PriceResolutionCache:
    """Cache isolé par test (le singleton du module n'est jamais partagé entre tests)."""
    return PriceResolutionCache(ttl_seconds=30, max_entries=100, enabled=True)


@pytest_asyncio.fixture(scope="function")
async def test_client(db_session: AsyncSession, cache: PriceResolutionCache) -> AsyncGenerator[AsyncClient, None]:
    """Fournit un AsyncClient httpx qui utilise la session DB de test isolée."""
    async def override_get_db_session() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db_session] = override_get_db_session
    app.dependency_overrides[get_resolution_cache] = lambda: cache
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()

# --- Repositories et fournisseurs ---

@pytest.fixture
def price_list_repo(db_session):
    return SQLAlchemyPriceListRepository(db_session)

@pytest.fixture
def entry_repo(db_session):
    return SQLAlchemyPriceListEntryRepository(db_session)

@pytest.fixture
def assignment_repo(db_session):
    return SQLAlchemyBusinessPartyAssignmentRepository(db_session)

@pytest.fixture
def metadata_repo(db_session):
    return SQLAlchemyGenerationMetadataRepository(db_session)

@pytest.fixture
def audit_repo(db_session):
    return SQLAlchemyPriceAuditRepository(db_session)

@pytest.fixture
def catalog(db_session):
    return SQLAlchemyCatalogFactsProvider(db_session)

@pytest.fixture
def documents(db_session):
    return SQLAlchemyDocumentHistoryProvider(db_session, page_size=2)

# --- Services ---

@pytest.fixture
def price_list_service(db_session, price_list_repo, entry_repo, assignment_repo, metadata_repo, catalog, cache):
    return PriceListService(db_session, price_list_repo, entry_repo, assignment_repo, metadata_repo, catalog, cache)

@pytest.fixture
def resolution_service(price_list_repo, entry_repo, assignment_repo, catalog, cache):
    return PriceResolutionService(price_list_repo, entry_repo, assignment_repo, catalog, cache)

@pytest.fixture
def validation_service(price_list_repo, entry_repo, assignment_repo):
    return PrecedenceValidationService(price_list_repo, entry_repo, assignment_repo)

@pytest.fixture
def bulk_service(db_session, price_list_repo, entry_repo, catalog, cache):
    return BulkUpdateService(db_session, price_list_repo, entry_repo, catalog, cache)

@pytest.fixture
def generation_service(
    db_session, price_list_repo, entry_repo, assignment_repo, metadata_repo, catalog, documents, cache
):
    return PriceListGenerationService(
        db_session, price_list_repo, entry_repo, assignment_repo, metadata_repo, catalog, documents, cache
    )

@pytest.fixture
def duplication_service(db_session, price_list_repo, entry_repo, assignment_repo, audit_repo, catalog, cache):
    return PriceListDuplicationService(
        db_session, price_list_repo, entry_repo, assignment_repo, audit_repo, catalog, cache
    )

# --- Données de catalogue ---

@pytest_asyncio.fixture(scope="function")
async def vat_rate(db_session: AsyncSession) -> catalog_models.VatRate:
    rate = catalog_models.VatRate(name="TVA normale", percentage=Decimal("20.00"))
    db_session.add(rate)
    await db_session.commit()
    await db_session.refresh(rate)
    return rate


@pytest_asyncio.fixture(scope="function")
async def products(db_session: AsyncSession, vat_rate) -> list:
    """Trois produits: deux dans la catégorie 1 (marque 10), un dans la catégorie 2 sans prix."""
    items = [
        catalog_models.Product(
            code="ROSE-01", name="Rosier grimpant", default_price=Decimal("10.00"),
            vat_rate_id=vat_rate.id, category_id=1, brand_id=10, unit_of_measure_id=1,
        ),
        catalog_models.Product(
            code="TERR-05", name="Terreau 5L", default_price=Decimal("19.99"),
            vat_rate_id=vat_rate.id, category_id=1, brand_id=10, unit_of_measure_id=1,
        ),
        catalog_models.Product(
            code="GRAINE-X", name="Graines de saison", default_price=None,
            vat_rate_id=vat_rate.id, category_id=2, brand_id=20, unit_of_measure_id=1,
        ),
    ]
    db_session.add_all(items)
    await db_session.commit()
    for item in items:
        await db_session.refresh(item)
    return items


@pytest_asyncio.fixture(scope="function")
async def customer(db_session: AsyncSession) -> catalog_models.BusinessParty:
    party = catalog_models.BusinessParty(name="Jardinerie du Centre", party_type="Customer")
    db_session.add(party)
    await db_session.commit()
    await db_session.refresh(party)
    return party


@pytest_asyncio.fixture(scope="function")
async def supplier(db_session: AsyncSession) -> catalog_models.BusinessParty:
    party = catalog_models.BusinessParty(name="Pépinières Martin", party_type="Supplier")
    db_session.add(party)
    await db_session.commit()
    await db_session.refresh(party)
    return party


async def add_purchase_document(
    db_session: AsyncSession, supplier_id: int, document_date: datetime, lines, status: str = "Approved"
) -> catalog_models.PurchaseDocument:
    """Crée un document d'achat et ses lignes: lines = [(product_id, prix, quantité), ...]."""
    document = catalog_models.PurchaseDocument(
        number=f"ACH-{document_date:%Y%m%d%H%M%S}", supplier_id=supplier_id,
        document_date=document_date, status=status,
    )
    db_session.add(document)
    await db_session.flush()
    for product_id, price, quantity in lines:
        db_session.add(catalog_models.PurchaseDocumentLine(
            document_id=document.id, product_id=product_id,
            unit_price=Decimal(price), quantity=Decimal(quantity),
        ))
    await db_session.commit()
    return document


@pytest.fixture
def make_purchase_document(db_session: AsyncSession):
    async def _make(supplier_id: int, document_date: datetime, lines, status: str = "Approved"):
        return await add_purchase_document(db_session, supplier_id, document_date, lines, status)
    return _make


@pytest.fixture
def past_window():
    """Fenêtre d'analyse entièrement passée."""
    now = datetime.utcnow()
    return now - timedelta(days=60), now - timedelta(days=1)
