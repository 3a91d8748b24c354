from fastapi import APIRouter, BackgroundTasks, Depends, Query, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import HTTPException
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from database import get_db
from schemas import (
    GigCreate, GigResponse, GigListResponse, AdminCreate,
    BidCreate, BidResponse, MyBidResponse, HireResponse,
    NotificationResponse, MarkAllReadResponse,
)
from crud import (
    admin_assigned_message,
    create_gig, require_gig, list_open_gigs, list_my_gigs, add_admin, remove_admin,
    submit_bid, list_bids_for_gig, list_my_bids,
    get_notifications, mark_notification_read, mark_all_read,
)
from dispatcher import (
    NotificationDispatcher, get_dispatcher, hired_event, admin_assigned_event,
    HIRED_EVENT, ADMIN_ASSIGNED_EVENT,
)
from events import publish_event
from hiring import hire_bid
from identity import IdentityClient, authenticate_token, current_user_id, get_identity
from typing import Optional
import json
import logging
import math

logger = logging.getLogger(__name__)

gigs_router = APIRouter(prefix="/api/v1/gigs", tags=["gigs"])
bids_router = APIRouter(prefix="/api/v1/bids", tags=["bids"])
notifications_router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])
realtime_router = APIRouter(tags=["realtime"])


# ------- Gigs -------
@gigs_router.get("", response_model=GigListResponse)
def list_gigs_endpoint(
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    gigs, total = list_open_gigs(db, search=search, page=page, limit=limit)
    return {
        "gigs": gigs,
        "count": len(gigs),
        "total": total,
        "total_pages": math.ceil(total / limit),
        "current_page": page,
    }


@gigs_router.post("", response_model=GigResponse, status_code=status.HTTP_201_CREATED)
def create_gig_endpoint(
    payload: GigCreate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return create_gig(
        db,
        owner_id=user_id,
        title=payload.title,
        description=payload.description,
        budget=payload.budget,
        admins=payload.admins,
    )


@gigs_router.get("/mine", response_model=list[GigResponse])
def my_gigs_endpoint(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    return list_my_gigs(db, user_id)


@gigs_router.get("/{gig_id}", response_model=GigResponse)
def get_gig_endpoint(gig_id: int, db: Session = Depends(get_db)):
    return require_gig(db, gig_id)


@gigs_router.post("/{gig_id}/admins", response_model=GigResponse)
def add_admin_endpoint(
    gig_id: int,
    payload: AdminCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
    identity: IdentityClient = Depends(get_identity),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    gig, target_id, notification = add_admin(db, gig_id, payload.email, user_id, identity)
    event = admin_assigned_event(
        message=notification.message if notification else admin_assigned_message(gig.title),
        gig_id=gig.id,
        notification_id=notification.id if notification else None,
    )
    background_tasks.add_task(dispatcher.publish, target_id, ADMIN_ASSIGNED_EVENT, event)
    background_tasks.add_task(publish_event, "gig.admin_assigned", {"gig_id": gig.id, "user_id": target_id})
    return gig


@gigs_router.delete("/{gig_id}/admins/{admin_user_id}", response_model=GigResponse)
def remove_admin_endpoint(
    gig_id: int,
    admin_user_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return remove_admin(db, gig_id, admin_user_id, user_id)


# ------- Bids -------
@bids_router.post("", response_model=BidResponse, status_code=status.HTTP_201_CREATED)
def submit_bid_endpoint(
    payload: BidCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    bid = submit_bid(db, payload.gig_id, user_id, payload.message, payload.price)
    background_tasks.add_task(publish_event, "bid.created", {
        "bid_id": bid.id,
        "gig_id": bid.gig_id,
        "freelancer_id": bid.freelancer_id,
    })
    return bid


@bids_router.get("/mine", response_model=list[MyBidResponse])
def my_bids_endpoint(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    return list_my_bids(db, user_id)


@bids_router.get("/gig/{gig_id}", response_model=list[BidResponse])
def gig_bids_endpoint(gig_id: int, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    return list_bids_for_gig(db, gig_id, user_id)


@bids_router.patch("/{bid_id}/hire", response_model=HireResponse)
def hire_endpoint(
    bid_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    outcome = hire_bid(db, bid_id, user_id)
    event = hired_event(
        message=outcome.message,
        gig_id=outcome.gig.id,
        bid_id=outcome.bid.id,
        notification_id=outcome.notification.id if outcome.notification else None,
    )
    # Runs after the response is sent; the hire is already committed.
    background_tasks.add_task(dispatcher.publish, outcome.bid.freelancer_id, HIRED_EVENT, event)
    background_tasks.add_task(publish_event, "bid.hired", {
        "bid_id": outcome.bid.id,
        "gig_id": outcome.gig.id,
        "freelancer_id": outcome.bid.freelancer_id,
        "hired_by": user_id,
        "rejected_count": outcome.rejected_count,
    })
    return {"message": "Freelancer hired successfully!", "bid": outcome.bid, "gig": outcome.gig}


# ------- Notifications -------
@notifications_router.get("", response_model=list[NotificationResponse])
def list_notifications_endpoint(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return get_notifications(db, user_id, limit=limit, unread_only=unread_only)


@notifications_router.patch("/{notification_id}/read", response_model=NotificationResponse)
def mark_read_endpoint(
    notification_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return mark_notification_read(db, notification_id, user_id)


@notifications_router.post("/read-all", response_model=MarkAllReadResponse)
def mark_all_read_endpoint(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    return {"updated": mark_all_read(db, user_id)}


# ------- Real-time -------
@realtime_router.websocket("/ws/notifications")
async def notifications_socket(websocket: WebSocket):
    """Push channel for ``hired`` and ``adminAssigned`` events.

    The token is checked before the upgrade is accepted; the client then
    announces itself with ``{"type": "join", "userId": <id>}`` and only its
    own user id is accepted.
    """
    identity: IdentityClient = websocket.app.state.identity
    dispatcher: NotificationDispatcher = websocket.app.state.dispatcher
    try:
        account = await run_in_threadpool(authenticate_token, identity, websocket.query_params.get("token"))
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    user_id = int(account["id"])

    await websocket.accept()
    joined = False
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", status.WS_1000_NORMAL_CLOSURE), frame.get("reason"))
            # Binary frames have no "text"; only JSON text frames are read.
            if frame.get("text") is None:
                continue
            try:
                message = json.loads(frame["text"])
            except ValueError:
                continue
            if not isinstance(message, dict) or message.get("type") != "join":
                continue
            if str(message.get("userId")) != str(user_id):
                await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
                return
            if not joined:
                dispatcher.connect(websocket, user_id)
                joined = True
            await websocket.send_json({"event": "joined", "data": {"userId": user_id}})
    except WebSocketDisconnect:
        pass
    finally:
        if joined:
            dispatcher.disconnect(websocket, user_id)
