"""
HTTP and WebSocket routes for the CrowdSpark API.
"""

from __future__ import annotations

import io
import json
import logging
import math
import os
import re
from datetime import datetime, timezone
from typing import Iterable, Optional

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Response,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from crowdspark.config import Settings, get_settings
from crowdspark.contributions import CampaignNotFoundError, record_contribution
from crowdspark.db import (
    CampaignRecord,
    DbClient,
    DuplicateRecordError,
    TransactionRecord,
    UserRecord,
    is_valid_id,
    new_id,
)
from crowdspark.dependencies import (
    get_connection_registry,
    get_db_client,
    get_notifier,
    get_payment_gateway,
    get_storage_client,
)
from crowdspark.invoices import invoice_filename, render_invoice
from crowdspark.notifications import (
    NEW_CAMPAIGN,
    ConnectionRegistry,
    Notifier,
    publish_quietly,
)
from crowdspark.payments import PaymentGateway, PaymentGatewayError, new_receipt
from crowdspark.schemas import (
    CampaignCreateRequest,
    CampaignCreatedResponse,
    CampaignResponse,
    CampaignSummary,
    CampaignTransactionResponse,
    ContributionRequest,
    ContributionSummary,
    CreateOrderRequest,
    ImageUploadRequest,
    ImageUploadResponse,
    LoginRequest,
    MessageResponse,
    OrderResponse,
    RegisterRequest,
    TransactionCreatedResponse,
    TransactionResponse,
    UserResponse,
    UserSummary,
)
from crowdspark.security import (
    Identity,
    clear_session_cookie,
    get_current_identity,
    hash_password,
    identity_from_cookies,
    issue_token,
    require_admin,
    require_roles,
    set_session_cookie,
    verify_password,
)
from crowdspark.storage import StorageClient
from crowdspark.types import (
    CAMPAIGN_CREATOR_ROLES,
    SELF_ASSIGNABLE_ROLES,
    TransactionStatus,
)

logger = logging.getLogger(__name__)

router = APIRouter()
admin_router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])

PLACEHOLDER_IMAGE = "https://via.placeholder.com/400x200?text=No+Image"

require_campaign_creator = require_roles(
    *CAMPAIGN_CREATOR_ROLES,
    detail="Only campaign owners or admins can create campaigns",
)


def _timestamp(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _require_id(value: str, label: str) -> str:
    if not is_valid_id(value):
        raise HTTPException(status_code=400, detail=f"Invalid {label} ID format")
    return value


def _user_response(user: UserRecord) -> UserResponse:
    return UserResponse(
        id=user.user_id,
        username=user.username,
        email=user.email,
        role=user.role,
        backed_campaigns=list(user.backed_campaigns),
        created_at=_timestamp(user.created_at),
    )


def _campaign_response(
    campaign: CampaignRecord, usernames: dict[str, str]
) -> CampaignResponse:
    return CampaignResponse(
        id=campaign.campaign_id,
        title=campaign.title,
        description=campaign.description,
        goal_amount=campaign.goal_amount,
        raised_amount=campaign.raised_amount or 0.0,
        deadline=_timestamp(campaign.deadline),
        category=campaign.category,
        image=campaign.image,
        status=campaign.status,
        owner=UserSummary(
            id=campaign.owner_id, username=usernames.get(campaign.owner_id)
        ),
        supporters=list(campaign.supporters),
        created_at=_timestamp(campaign.created_at),
    )


def _campaign_responses(
    db: DbClient, campaigns: Iterable[CampaignRecord]
) -> list[CampaignResponse]:
    campaigns = list(campaigns)
    usernames = db.get_usernames(c.owner_id for c in campaigns)
    return [_campaign_response(c, usernames) for c in campaigns]


def _transaction_response(transaction: TransactionRecord) -> TransactionResponse:
    return TransactionResponse(
        id=transaction.transaction_id,
        user=transaction.user_id,
        campaign=transaction.campaign_id,
        amount=transaction.amount,
        provider=transaction.provider,
        status=transaction.status,
        message=transaction.message,
        payment_id=transaction.payment_id,
        created_at=_timestamp(transaction.created_at),
    )


# Accounts


@router.post("/register", response_model=MessageResponse, status_code=201)
def register(
    payload: RegisterRequest,
    response: Response,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    if payload.role not in {role.value for role in SELF_ASSIGNABLE_ROLES}:
        raise HTTPException(status_code=400, detail="Invalid role selected")

    try:
        user = db.create_user(
            username=payload.username,
            email=str(payload.email),
            password_hash=hash_password(payload.password, rounds=settings.bcrypt_rounds),
            role=payload.role,
        )
    except DuplicateRecordError:
        raise HTTPException(status_code=409, detail="Email already registered")

    token = issue_token(
        user_id=user.user_id,
        username=user.username,
        role=user.role,
        secret=settings.jwt_secret,
        expires_in=settings.jwt_expires_in,
    )
    set_session_cookie(response, token, settings)
    logger.info("Registered user %s as %s", user.user_id, user.role.value)
    return MessageResponse(message="Registered successfully")


@router.post("/login", response_model=MessageResponse)
def login(
    payload: LoginRequest,
    response: Response,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    user = db.get_user_by_email(str(payload.email))
    # Same answer for unknown email and wrong password.
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    token = issue_token(
        user_id=user.user_id,
        username=user.username,
        role=user.role,
        secret=settings.jwt_secret,
        expires_in=settings.jwt_expires_in,
    )
    set_session_cookie(response, token, settings)
    return MessageResponse(message="Login successful")


@router.get("/me", response_model=UserResponse)
def me(
    identity: Identity = Depends(get_current_identity),
    db: DbClient = Depends(get_db_client),
):
    user = db.get_user(identity.id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return _user_response(user)


@router.post("/logout", response_model=MessageResponse)
def logout(response: Response, settings: Settings = Depends(get_settings)):
    clear_session_cookie(response, settings)
    return MessageResponse(message="Logged out successfully")


# Campaigns


@router.post("/campaigns", response_model=CampaignCreatedResponse, status_code=201)
async def create_campaign(
    payload: CampaignCreateRequest,
    identity: Identity = Depends(require_campaign_creator),
    db: DbClient = Depends(get_db_client),
    notifier: Notifier = Depends(get_notifier),
):
    deadline = payload.deadline
    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=timezone.utc)
    if deadline <= datetime.now(timezone.utc):
        raise HTTPException(status_code=400, detail="Invalid or past deadline")

    try:
        campaign = await run_in_threadpool(
            db.create_campaign,
            owner_id=identity.id,
            title=payload.title,
            description=payload.description,
            goal_amount=payload.goal_amount,
            deadline=deadline.timestamp(),
            image=payload.image,
            category=payload.category,
        )
    except DuplicateRecordError:
        raise HTTPException(
            status_code=409, detail="Campaign with this title already exists"
        )

    logger.info("Campaign %s created by %s", campaign.campaign_id, identity.id)
    await publish_quietly(
        notifier.broadcast(
            NEW_CAMPAIGN,
            {
                "title": campaign.title,
                "owner": identity.username,
                "category": campaign.category,
                "goalAmount": campaign.goal_amount,
            },
        ),
        NEW_CAMPAIGN,
    )
    return CampaignCreatedResponse(
        message="Campaign created successfully",
        campaign=_campaign_response(campaign, {identity.id: identity.username}),
    )


@router.get("/campaigns", response_model=list[CampaignResponse])
def list_campaigns(db: DbClient = Depends(get_db_client)):
    return _campaign_responses(db, db.list_campaigns())


@router.get("/campaigns/{campaign_id}", response_model=CampaignResponse)
def get_campaign(campaign_id: str, db: DbClient = Depends(get_db_client)):
    _require_id(campaign_id, "campaign")
    campaign = db.get_campaign(campaign_id)
    if not campaign:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return _campaign_responses(db, [campaign])[0]


@router.get(
    "/campaigns/{campaign_id}/transactions",
    response_model=list[CampaignTransactionResponse],
)
def list_campaign_transactions(
    campaign_id: str, db: DbClient = Depends(get_db_client)
):
    _require_id(campaign_id, "campaign")
    transactions = db.list_transactions(campaign_id=campaign_id)
    usernames = db.get_usernames(t.user_id for t in transactions)
    results = []
    for t in transactions:
        user = None
        if t.user_id in usernames:
            user = UserSummary(id=t.user_id, username=usernames[t.user_id])
        results.append(
            CampaignTransactionResponse(
                id=t.transaction_id,
                user=user,
                campaign=t.campaign_id,
                amount=t.amount,
                provider=t.provider,
                status=t.status,
                message=t.message,
                payment_id=t.payment_id,
                created_at=_timestamp(t.created_at),
            )
        )
    return results


@router.get("/my-campaigns", response_model=list[CampaignSummary])
def my_campaigns(
    identity: Identity = Depends(get_current_identity),
    db: DbClient = Depends(get_db_client),
):
    return [
        CampaignSummary(
            id=c.campaign_id,
            title=c.title or "Untitled Campaign",
            image=c.image or PLACEHOLDER_IMAGE,
            goal_amount=c.goal_amount or 0.0,
            raised_amount=c.raised_amount or 0.0,
        )
        for c in db.list_campaigns(owner_id=identity.id)
    ]


@router.post("/uploads/campaign-image", response_model=ImageUploadResponse)
def campaign_image_upload(
    payload: ImageUploadRequest,
    identity: Identity = Depends(get_current_identity),
    storage: StorageClient = Depends(get_storage_client),
):
    extension = os.path.splitext(payload.filename)[1].lower()
    if not re.match(r"^\.[a-z0-9]{1,8}$", extension):
        extension = ""
    path = f"campaigns/{identity.id}/{new_id()}{extension}"
    return ImageUploadResponse(
        upload_url=storage.presign_put(path, payload.content_type),
        image_url=storage.public_url(path),
    )


# Payments and contributions


@router.post("/create-order", response_model=OrderResponse, status_code=201)
def create_order(
    payload: CreateOrderRequest,
    identity: Identity = Depends(get_current_identity),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    amount = payload.amount
    if isinstance(amount, bool):
        amount = None
    try:
        amount = float(amount)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid amount")
    if not math.isfinite(amount) or amount <= 0:
        raise HTTPException(status_code=400, detail="Invalid amount")

    try:
        order = gateway.create_order(amount, new_receipt())
    except PaymentGatewayError:
        logger.exception("Failed to create gateway order for %s", identity.id)
        raise HTTPException(status_code=500, detail="Failed to create order")
    return OrderResponse(
        order_id=order.order_id, amount=order.amount, currency=order.currency
    )


@router.post(
    "/transactions", response_model=TransactionCreatedResponse, status_code=201
)
async def create_transaction(
    payload: ContributionRequest,
    identity: Identity = Depends(get_current_identity),
    db: DbClient = Depends(get_db_client),
    notifier: Notifier = Depends(get_notifier),
):
    _require_id(payload.campaign_id, "campaign")
    try:
        result = await record_contribution(
            db,
            notifier,
            identity,
            campaign_id=payload.campaign_id,
            amount=payload.amount,
            message=payload.message,
        )
    except CampaignNotFoundError:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return TransactionCreatedResponse(
        message="Transaction successful",
        transaction=_transaction_response(result.transaction),
    )


@router.get("/my-contributions", response_model=list[ContributionSummary])
def my_contributions(
    identity: Identity = Depends(get_current_identity),
    db: DbClient = Depends(get_db_client),
):
    transactions = db.list_transactions(
        user_id=identity.id, status=TransactionStatus.COMPLETED
    )
    campaigns = db.get_campaigns(t.campaign_id for t in transactions)
    return [
        ContributionSummary(
            id=t.transaction_id,
            title=campaigns[t.campaign_id].title,
            amount=t.amount,
            date=_timestamp(t.created_at).date().isoformat(),
        )
        # Contributions to deleted campaigns are skipped.
        for t in transactions
        if t.campaign_id in campaigns
    ]


@router.get("/invoice/{transaction_id}")
def invoice(
    transaction_id: str,
    identity: Identity = Depends(get_current_identity),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    _require_id(transaction_id, "transaction")
    transaction = db.get_transaction(transaction_id)
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")

    campaign = db.get_campaign(transaction.campaign_id)
    pdf_bytes = render_invoice(
        transaction,
        campaign.title if campaign else None,
        currency=settings.payment_currency,
    )
    filename = invoice_filename(transaction.transaction_id)
    return StreamingResponse(
        io.BytesIO(pdf_bytes),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# Admin


@admin_router.get("/users", response_model=list[UserResponse])
def admin_list_users(db: DbClient = Depends(get_db_client)):
    return [_user_response(u) for u in db.list_users()]


@admin_router.delete("/users/{user_id}", response_model=MessageResponse)
def admin_delete_user(user_id: str, db: DbClient = Depends(get_db_client)):
    _require_id(user_id, "user")
    if not db.delete_user(user_id):
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("Deleted user %s", user_id)
    return MessageResponse(message="User deleted")


@admin_router.get("/campaigns", response_model=list[CampaignResponse])
def admin_list_campaigns(db: DbClient = Depends(get_db_client)):
    return _campaign_responses(db, db.list_campaigns())


@admin_router.delete("/campaigns/{campaign_id}", response_model=MessageResponse)
def admin_delete_campaign(campaign_id: str, db: DbClient = Depends(get_db_client)):
    _require_id(campaign_id, "campaign")
    if not db.delete_campaign(campaign_id):
        raise HTTPException(status_code=404, detail="Campaign not found")
    logger.info("Deleted campaign %s", campaign_id)
    return MessageResponse(message="Campaign deleted")


# Notifications


async def _send_error(websocket: WebSocket, message: str) -> None:
    await websocket.send_json({"event": "error", "data": {"message": message}})


async def _handle_client_frame(
    websocket: WebSocket,
    raw: str,
    identity: Optional[Identity],
    registry: ConnectionRegistry,
) -> None:
    try:
        frame = json.loads(raw)
    except ValueError:
        await _send_error(websocket, "Invalid frame")
        return
    if not isinstance(frame, dict) or frame.get("event") != "join":
        await _send_error(websocket, "Unsupported event")
        return

    room = str(frame.get("data") or "")
    # Channels are bound to the session identity, never to client input.
    if identity is None or room != identity.id:
        logger.warning(
            "Rejected join of channel %s by %s",
            room,
            identity.id if identity else "anonymous socket",
        )
        await _send_error(websocket, "Forbidden")
        return
    registry.join(websocket, room)
    await websocket.send_json({"event": "joined", "data": {"room": room}})


@router.websocket("/ws")
async def notifications_socket(
    websocket: WebSocket,
    registry: ConnectionRegistry = Depends(get_connection_registry),
    settings: Settings = Depends(get_settings),
):
    identity = identity_from_cookies(websocket.cookies, settings)
    await websocket.accept()
    registry.connect(websocket)
    if identity:
        registry.join(websocket, identity.id)
        logger.info("Socket joined channel %s", identity.id)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                # Binary frames carry no events.
                await _send_error(websocket, "Unsupported event")
                continue
            await _handle_client_frame(websocket, raw, identity, registry)
    except WebSocketDisconnect:
        logger.info(
            "Socket disconnected from channel %s", registry.room_of(websocket)
        )
    finally:
        registry.disconnect(websocket)
