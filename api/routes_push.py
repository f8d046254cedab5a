# api/routes_push.py
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from core.container import Container, get_container
from core.response import ok
from models.schemas import RegisterSubscriptionRequest

router = APIRouter()


@router.get("/vapid-public-key")
async def vapid_public_key(container: Container = Depends(get_container)):
    """Public key the browser needs for pushManager.subscribe()."""
    key = container.settings.VAPID_PUBLIC_KEY
    if not key:
        raise HTTPException(status_code=503, detail="Push notifications are not configured")
    return ok({"publicKey": key})


@router.post("/subscriptions")
async def register_subscription(
    payload: RegisterSubscriptionRequest,
    container: Container = Depends(get_container),
):
    """
    - 201 Created: new endpoint stored
    - 200 OK: known endpoint refreshed and re-activated
    - 409 Conflict: lost a race with a concurrent registration of the same endpoint
    """
    result = await container.subscriptions.register_subscription(
        user_id=payload.user_id,
        endpoint=payload.endpoint,
        p256dh_key=payload.keys.p256dh,
        auth_key=payload.keys.auth,
        user_type=payload.user_type,
    )
    if result.get("status_code") == 409:
        raise HTTPException(status_code=409, detail=result["error"])
    return JSONResponse(status_code=result["status_code"], content=ok(result["subscription"]))


@router.delete("/subscriptions")
async def remove_subscription(
    user_id: str = Query(..., min_length=1, alias="userId"),
    endpoint: str = Query(..., min_length=1),
    container: Container = Depends(get_container),
):
    result = await container.subscriptions.remove_subscription(user_id, endpoint)
    if result.get("status_code") == 404:
        raise HTTPException(status_code=404, detail=result["error"])
    return ok({"message": result["message"]})
