from fastapi import Depends
from sqlmodel import Session

from storefront.database import get_session, get_session_factory
from storefront.realtime import change_feed
from storefront.services.order_store import AsyncOrderStore, OrderStore


def get_order_store(session: Session = Depends(get_session)) -> OrderStore:
    return OrderStore(session, feed=change_feed)


def get_async_order_store(session_factory=Depends(get_session_factory)) -> AsyncOrderStore:
    return AsyncOrderStore(session_factory, feed=change_feed)
