from typing import Callable

from fastapi import HTTPException

from channel_sync.services.exceptions import InvalidTransitionError, MappingNotFoundError, SyncError
from channel_sync.services.product_provider import HttpProductSnapshotProvider, ProductSnapshotProvider
from channel_sync.session_factory import session_factory

_product_provider: ProductSnapshotProvider | None = None


def get_product_provider() -> ProductSnapshotProvider:
    global _product_provider
    if _product_provider is None:
        _product_provider = HttpProductSnapshotProvider()
    return _product_provider


def get_session_factory() -> Callable:
    return session_factory


def raise_http(e: Exception):
    """서비스 예외 → HTTPException"""
    if isinstance(e, MappingNotFoundError):
        raise HTTPException(status_code=404, detail=e.message) from e
    if isinstance(e, InvalidTransitionError):
        raise HTTPException(status_code=409, detail=e.message) from e
    if isinstance(e, SyncError):
        raise HTTPException(status_code=400, detail=e.to_dict()) from e
    if isinstance(e, ValueError):
        raise HTTPException(status_code=400, detail=str(e)) from e
    raise e
