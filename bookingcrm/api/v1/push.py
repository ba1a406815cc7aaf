"""
Web Push subscription API endpoints.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from bookingcrm.api.deps import get_db
from bookingcrm.config import get_settings
from bookingcrm.infrastructure.db.models import PushSubscription

router = APIRouter(prefix="/api/v1/push", tags=["push"])


class PushKeys(BaseModel):
    p256dh: str
    auth: str


class SubscribeRequest(BaseModel):
    endpoint: str
    keys: PushKeys


@router.get("/vapid-public-key")
def vapid_public_key():
    return {"public_key": get_settings().VAPID_PUBLIC_KEY}


@router.post("/subscribe")
def subscribe(body: SubscribeRequest, db: Session = Depends(get_db)):
    existing = db.query(PushSubscription).filter(
        PushSubscription.endpoint == body.endpoint
    ).first()

    if existing:
        existing.p256dh = body.keys.p256dh
        existing.auth = body.keys.auth
    else:
        sub = PushSubscription(
            endpoint=body.endpoint,
            p256dh=body.keys.p256dh,
            auth=body.keys.auth,
        )
        db.add(sub)

    db.commit()
    return {"success": True}


@router.delete("/unsubscribe")
def unsubscribe(body: SubscribeRequest, db: Session = Depends(get_db)):
    deleted = db.query(PushSubscription).filter(
        PushSubscription.endpoint == body.endpoint,
    ).delete()
    db.commit()

    return {"success": True, "deleted": deleted}
