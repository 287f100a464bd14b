"""
FastAPI dependencies shared by the routers.

Tests replace these through ``app.dependency_overrides``, e.g. to hand the
payment routes a coordinator with a mocked provider.
"""

from fastapi import Depends

from .dialogue import DialogueEngine
from .menu_catalog import MenuCatalog
from .services.payment import PaymentCoordinator
from .storage import get_storage
from .storage.base import StorageBackend


def get_menu_catalog(storage: StorageBackend = Depends(get_storage)) -> MenuCatalog:
    return MenuCatalog(storage)


def get_payment_coordinator(storage: StorageBackend = Depends(get_storage)) -> PaymentCoordinator:
    return PaymentCoordinator.from_config(storage)


def get_dialogue_engine(
    storage: StorageBackend = Depends(get_storage),
    catalog: MenuCatalog = Depends(get_menu_catalog),
    payments: PaymentCoordinator = Depends(get_payment_coordinator),
) -> DialogueEngine:
    return DialogueEngine(storage, catalog, payments)
