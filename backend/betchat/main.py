from __future__ import annotations

import asyncio
from typing import Annotated, Any

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request, WebSocket
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.orm import Session, sessionmaker
from starlette.websockets import WebSocketDisconnect

from . import schemas
from .core.config import Settings, settings
from .core.errors import BetChatError, NotPermitted
from .db import SessionLocal, get_db, init_db
from .domain import EventSpec, EventStatus, to_minor
from .ledger import LedgerAdapter, build_ledger
from .realtime import RoomHub, challenge_room, event_room
from .services.challenge_service import ChallengeService
from .services.lifecycle_service import EventLifecycleManager
from .services.pool_service import PoolService
from .services.stake_service import StakeOrchestrator

app = FastAPI(title="BetChat API", version="0.1.0", debug=settings.debug)

hub = RoomHub()
_ledger: LedgerAdapter = build_ledger(settings)

ROOM_CONTROL_MESSAGES = {
    "join_event": ("event", True),
    "leave_event": ("event", False),
    "join_challenge": ("challenge", True),
    "leave_challenge": ("challenge", False),
}


@app.on_event("startup")
def on_startup() -> None:
    """Initialize database connections when the API boots."""

    init_db()


@app.exception_handler(BetChatError)
async def handle_betchat_error(request: Request, exc: BetChatError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("{} {} failed: {} ({})", request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


# ----------------------------------------------------------------------
# Dependencies


def current_user(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """Caller identity asserted by the fronting auth gateway."""

    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id


def _app_settings() -> Settings:
    return settings


def _session_factory() -> sessionmaker[Session]:
    return SessionLocal


def _ledger_adapter() -> LedgerAdapter:
    return _ledger


def _broadcaster() -> RoomHub:
    return hub


def _stake_orchestrator(
    factory=Depends(_session_factory),
    ledger=Depends(_ledger_adapter),
    broadcaster=Depends(_broadcaster),
    app_settings: Settings = Depends(_app_settings),
) -> StakeOrchestrator:
    return StakeOrchestrator(factory, ledger=ledger, broadcaster=broadcaster, settings=app_settings)


def _lifecycle_manager(
    factory=Depends(_session_factory),
    ledger=Depends(_ledger_adapter),
    broadcaster=Depends(_broadcaster),
    app_settings: Settings = Depends(_app_settings),
) -> EventLifecycleManager:
    return EventLifecycleManager(
        factory, ledger=ledger, broadcaster=broadcaster, settings=app_settings
    )


def _challenge_service(
    factory=Depends(_session_factory),
    stakes: StakeOrchestrator = Depends(_stake_orchestrator),
    lifecycle: EventLifecycleManager = Depends(_lifecycle_manager),
) -> ChallengeService:
    return ChallengeService(factory, stakes=stakes, lifecycle=lifecycle)


def _pool_service(
    db=Depends(get_db), app_settings: Settings = Depends(_app_settings)
) -> PoolService:
    """Provide the read-only pool service wired with a SQLAlchemy session."""

    return PoolService(db, app_settings)


CurrentUser = Annotated[str, Depends(current_user)]


# ----------------------------------------------------------------------
# Events


@app.post("/api/events", response_model=schemas.Event, status_code=201, tags=["events"])
def create_event(
    payload: schemas.EventCreate,
    user_id: CurrentUser,
    lifecycle: EventLifecycleManager = Depends(_lifecycle_manager),
):
    """Create an event together with its empty pool."""

    spec = EventSpec(
        title=payload.title,
        description=payload.description,
        category=payload.category,
        rules=payload.rules,
        event_type=payload.event_type,
        is_private=payload.is_private,
        start_time=payload.start_time,
        end_time=payload.end_time,
        wager_minor=to_minor(payload.wager_amount),
        max_participants=payload.max_participants,
    )
    event = lifecycle.create(spec, user_id)
    return schemas.Event.from_record(event, status=lifecycle.status(event).value)


@app.get("/api/events", response_model=schemas.EventList, tags=["events"])
def list_events(
    *,
    status: Annotated[EventStatus | None, Query(description="Derived status filter")] = None,
    category: Annotated[str | None, Query(description="Category filter")] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
    lifecycle: EventLifecycleManager = Depends(_lifecycle_manager),
):
    """List public events, soonest start first."""

    records, total = lifecycle.list_events(
        status=status, category=category, limit=limit, offset=offset
    )
    now = lifecycle.now()
    items = [
        schemas.Event.from_record(
            record.event,
            status=lifecycle.status(record.event, now).value,
            participant_count=record.participant_count,
            total_minor=record.pool.total_minor if record.pool else 0,
        )
        for record in records
    ]
    return schemas.EventList(total=total, items=items)


@app.get("/api/events/{event_id}", response_model=schemas.Event, tags=["events"])
def get_event(event_id: str, service: PoolService = Depends(_pool_service)):
    view = service.get_event(event_id)
    return schemas.Event.from_record(
        view.event,
        status=view.status.value,
        participant_count=view.participant_count,
        total_minor=view.pool.total_minor,
    )


@app.post("/api/events/{event_id}/join", response_model=schemas.JoinResponse, tags=["events"])
def join_event(
    event_id: str,
    payload: schemas.JoinRequest,
    user_id: CurrentUser,
    stakes: StakeOrchestrator = Depends(_stake_orchestrator),
):
    """Stake on one side of the event; a user can join each event once."""

    receipt = stakes.place_stake(event_id, user_id, payload.prediction, payload.wager_amount)
    return schemas.JoinResponse.from_receipt(receipt)


@app.get("/api/events/{event_id}/pool", response_model=schemas.Pool, tags=["events"])
def get_event_pool(event_id: str, service: PoolService = Depends(_pool_service)):
    return schemas.Pool.from_view(service.pool_view(event_id))


@app.get(
    "/api/events/{event_id}/participation/{user_id}",
    response_model=schemas.ParticipationStatus,
    tags=["events"],
)
def get_participation(
    event_id: str,
    user_id: str,
    caller_id: CurrentUser,
    service: PoolService = Depends(_pool_service),
):
    """Whether ``user_id`` has joined; users can only read their own participation."""

    if caller_id != user_id:
        raise NotPermitted("You can only view your own participation")
    return schemas.ParticipationStatus.from_view(service.get_participation(event_id, user_id))


@app.get(
    "/api/events/{event_id}/participants",
    response_model=list[schemas.Participant],
    tags=["events"],
)
def list_participants(event_id: str, service: PoolService = Depends(_pool_service)):
    return [schemas.Participant.from_view(view) for view in service.list_participants(event_id)]


@app.get(
    "/api/events/{event_id}/matches",
    response_model=list[schemas.Match],
    tags=["events"],
)
def list_matches(event_id: str, service: PoolService = Depends(_pool_service)):
    """Opposing stakes paired on this event, oldest first."""

    return [schemas.Match.from_view(view) for view in service.list_matches(event_id)]

@app.post("/api/events/{event_id}/cancel", response_model=schemas.Cancellation, tags=["events"])
def cancel_event(
    event_id: str,
    user_id: CurrentUser,
    payload: Annotated[schemas.CancelRequest | None, Body()] = None,
    lifecycle: EventLifecycleManager = Depends(_lifecycle_manager),
):
    """Cancel the event and refund every stake (creator only)."""

    summary = lifecycle.cancel(
        event_id, requested_by=user_id, reason=payload.reason if payload else None
    )
    return schemas.Cancellation.from_summary(summary)


@app.post("/api/events/{event_id}/settle", response_model=schemas.Settlement, tags=["events"])
def settle_event(
    event_id: str,
    payload: schemas.SettleRequest,
    user_id: CurrentUser,
    lifecycle: EventLifecycleManager = Depends(_lifecycle_manager),
):
    """Declare the winning outcome and pay winners (creator only)."""

    summary = lifecycle.settle(event_id, payload.winning_outcome, requested_by=user_id)
    return schemas.Settlement.from_summary(summary)


# ----------------------------------------------------------------------
# Challenges


@app.post("/api/challenges", response_model=schemas.Challenge, status_code=201, tags=["challenges"])
def create_challenge(
    payload: schemas.ChallengeCreate,
    user_id: CurrentUser,
    service: ChallengeService = Depends(_challenge_service),
):
    view = service.create(
        challenger_id=user_id,
        challenged_id=payload.challenged_id,
        title=payload.title,
        description=payload.description,
        category=payload.category,
        wager_amount=payload.wager_amount,
        due_date=payload.due_date,
    )
    return schemas.Challenge.from_view(view)


@app.get("/api/challenges", response_model=schemas.ChallengeList, tags=["challenges"])
def list_challenges(user_id: CurrentUser, service: ChallengeService = Depends(_challenge_service)):
    items = [schemas.Challenge.from_view(view) for view in service.list_for_user(user_id)]
    return schemas.ChallengeList(total=len(items), items=items)


@app.get("/api/challenges/{challenge_id}", response_model=schemas.Challenge, tags=["challenges"])
def get_challenge(challenge_id: str, service: ChallengeService = Depends(_challenge_service)):
    return schemas.Challenge.from_view(service.get(challenge_id))


@app.post(
    "/api/challenges/{challenge_id}/accept", response_model=schemas.Challenge, tags=["challenges"]
)
def accept_challenge(
    challenge_id: str, user_id: CurrentUser, service: ChallengeService = Depends(_challenge_service)
):
    return schemas.Challenge.from_view(service.accept(challenge_id, user_id))


@app.post(
    "/api/challenges/{challenge_id}/decline", response_model=schemas.Challenge, tags=["challenges"]
)
def decline_challenge(
    challenge_id: str, user_id: CurrentUser, service: ChallengeService = Depends(_challenge_service)
):
    return schemas.Challenge.from_view(service.decline(challenge_id, user_id))


@app.post(
    "/api/challenges/{challenge_id}/cancel", response_model=schemas.Cancellation, tags=["challenges"]
)
def withdraw_challenge(
    challenge_id: str, user_id: CurrentUser, service: ChallengeService = Depends(_challenge_service)
):
    return schemas.Cancellation.from_summary(service.cancel(challenge_id, user_id))


@app.post(
    "/api/challenges/{challenge_id}/settle", response_model=schemas.Settlement, tags=["challenges"]
)
def settle_challenge(
    challenge_id: str,
    payload: schemas.ChallengeSettleRequest,
    user_id: CurrentUser,
    service: ChallengeService = Depends(_challenge_service),
):
    summary = service.settle(challenge_id, payload.winner_id, requested_by=user_id)
    return schemas.Settlement.from_summary(summary)


# ----------------------------------------------------------------------
# Realtime


async def _pump_outgoing(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        message = await queue.get()
        await websocket.send_json(message)


async def _read_control(websocket: WebSocket, room_hub: RoomHub, subscriber) -> None:
    while True:
        message: Any = await websocket.receive_json()
        if not isinstance(message, dict):
            await websocket.send_json({"type": "error", "data": {"message": "Invalid message"}})
            continue
        control = ROOM_CONTROL_MESSAGES.get(str(message.get("type")))
        if control is None:
            await websocket.send_json(
                {"type": "error", "data": {"message": "Unsupported message", "received": message.get("type")}}
            )
            continue
        scope, joining = control
        target = message.get("eventId" if scope == "event" else "challengeId")
        if not target:
            await websocket.send_json({"type": "error", "data": {"message": f"Missing {scope} id"}})
            continue
        room = event_room(str(target)) if scope == "event" else challenge_room(str(target))
        if joining:
            room_hub.join(subscriber, room)
        else:
            room_hub.leave(subscriber, room)
        await websocket.send_json(
            {"type": "room_joined" if joining else "room_left", "data": {"room": room}}
        )


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Room subscriptions for event and challenge updates."""

    await websocket.accept()
    room_hub = hub
    subscriber = room_hub.connect()
    reader = asyncio.create_task(_read_control(websocket, room_hub, subscriber))
    writer = asyncio.create_task(_pump_outgoing(websocket, subscriber.queue))
    try:
        done, pending = await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning("Websocket subscriber {} dropped: {}", subscriber.subscriber_id, exc)
    finally:
        room_hub.disconnect(subscriber)
