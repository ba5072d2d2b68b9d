import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, text

from storefront.database import get_session
from storefront.realtime import change_feed
from storefront.utils.timestamps import utc_now

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/check")
def health_check(session: Session = Depends(get_session)):
    db_status = "ok"

    try:
        # simple DB ping
        session.exec(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error(f"Health check database ping failed: {exc}")
        db_status = "failed"

    return {
        "status": "ok",
        "database": db_status,
        "live_subscribers": change_feed.subscriber_count,
        "timestamp": utc_now().isoformat()
    }
