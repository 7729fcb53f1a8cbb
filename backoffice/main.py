"""
Module principal de l'application FastAPI du back-office tarifaire.

Configure le logging et CORS, puis monte le routeur des listes de prix
(store, résolution, validation de précédence, mises à jour massives,
génération, duplication et application aux produits).
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backoffice.config import settings
from backoffice.database import create_tables
from backoffice.price_lists.interfaces.api import price_list_router

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.DB_CREATE_TABLES_ON_STARTUP:
        logger.info("Création des tables au démarrage...")
        await create_tables()
    yield


app = FastAPI(
    title="Pricing Back-Office API",
    description="API de résolution des prix et de gestion des listes de prix.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(price_list_router, prefix=settings.API_V1_PREFIX)


@app.get("/health", tags=["Santé"])
async def health_check():
    return {"status": "ok"}


logger.info(f"Application initialisée, API montée sur {settings.API_V1_PREFIX}")
