"""
FastAPI dependency providers.

Tests swap any of these through app.dependency_overrides.
"""

from functools import lru_cache

from fastapi import Depends

from ..core.config import Settings, settings
from ..services.document_analyzer import DocumentAnalyzer, DocumentModel, create_document_model
from ..services.entity_router import EntityRouter, create_entity_router
from ..services.google_auth import GoogleAuthProvider
from ..services.intake import IntakeBrowser, IntakeOrchestrator
from ..services.storage import SQLiteTokenStore, TokenStoreBase


def get_settings() -> Settings:
    return settings


@lru_cache
def _token_store(db_path: str) -> SQLiteTokenStore:
    return SQLiteTokenStore(db_path)


def get_token_store(config: Settings = Depends(get_settings)) -> TokenStoreBase:
    return _token_store(config.token_db_path)


def get_auth_provider(
    store: TokenStoreBase = Depends(get_token_store),
    config: Settings = Depends(get_settings),
) -> GoogleAuthProvider:
    return GoogleAuthProvider(
        store,
        config.google_client_id,
        config.google_client_secret,
        timeout=config.remote_timeout_seconds,
    )


def get_entity_router(config: Settings = Depends(get_settings)) -> EntityRouter:
    return create_entity_router(config.entity_registry_path)


# One backend per distinct configuration, shared across requests and closed on shutdown
_document_models: dict[tuple, DocumentModel] = {}


def get_document_model(config: Settings = Depends(get_settings)) -> DocumentModel:
    key = (
        config.document_model.lower(),
        config.openai_api_key,
        config.openai_model,
        config.az_di_endpoint,
        config.az_di_api_key,
        config.remote_timeout_seconds,
    )
    model = _document_models.get(key)
    if model is None:
        # Raises ConfigurationError when the selected backend has no credentials
        model = _document_models[key] = create_document_model(config)
    return model


async def close_document_models() -> None:
    while _document_models:
        _, model = _document_models.popitem()
        await model.aclose()


def get_analyzer(
    model: DocumentModel = Depends(get_document_model),
    router: EntityRouter = Depends(get_entity_router),
) -> DocumentAnalyzer:
    return DocumentAnalyzer(model, router)


def get_orchestrator(
    auth: GoogleAuthProvider = Depends(get_auth_provider),
    analyzer: DocumentAnalyzer = Depends(get_analyzer),
    config: Settings = Depends(get_settings),
) -> IntakeOrchestrator:
    return IntakeOrchestrator(auth, analyzer, config)


def get_browser(
    auth: GoogleAuthProvider = Depends(get_auth_provider),
    config: Settings = Depends(get_settings),
) -> IntakeBrowser:
    return IntakeBrowser(auth, config)
