"""
Get-together (family event) endpoints.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from arch_backend.db import PostgresDbClient
from arch_backend.dependencies import (
    Clock,
    get_clock,
    get_current_user,
    get_db_client,
    get_event_bus,
    get_notifier,
)
from arch_backend.errors import Forbidden, NotFound, ValidationFailed
from arch_backend.membership import is_admin, load_member_arch
from arch_backend.notifications import NotificationDispatcher
from arch_backend.realtime import EventBus, broadcast
from arch_backend.records import (
    EventStatus,
    EventType,
    GetTogetherRecord,
    RsvpStatus,
    UserRecord,
)
from arch_backend.routes.common import user_arches
from arch_backend.schemas import (
    CreateGetTogetherRequest,
    RsvpRequest,
    TimelineEntryRequest,
    UpdateGetTogetherRequest,
)
from arch_backend.serializers import (
    get_together_json,
    get_together_user_ids,
    timeline_entry_json,
)
from arch_backend.stats import rsvp_stats
from arch_backend.timeutils import from_datetime, to_iso

logger = logging.getLogger(__name__)

router = APIRouter()


def _load(db: PostgresDbClient, get_together_id: str, user_id: str):
    get_together = db.get_get_together(get_together_id)
    if get_together is None:
        raise NotFound("Get-together not found")
    arch = load_member_arch(db, get_together.arch_id, user_id)
    return arch, get_together


def _render(db: PostgresDbClient, get_together: GetTogetherRecord) -> dict:
    return get_together_json(
        get_together, db.get_users(get_together_user_ids(get_together))
    )


@router.get("")
def list_get_togethers(
    arch_id: Optional[str] = Query(default=None, alias="archId"),
    status: Optional[EventStatus] = Query(default=None),
    upcoming: bool = Query(default=False),
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    clock: Clock = Depends(get_clock),
):
    arches = user_arches(db, user.user_id, arch_id)
    get_togethers = db.list_get_togethers(
        [a.arch_id for a in arches],
        status=status,
        scheduled_after=clock() if upcoming else None,
    )
    users = db.get_users(
        uid for gt in get_togethers for uid in get_together_user_ids(gt)
    )
    return [get_together_json(gt, users) for gt in get_togethers]


@router.get("/{get_together_id}")
def get_get_together(
    get_together_id: str,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
):
    _, get_together = _load(db, get_together_id, user.user_id)
    return _render(db, get_together)


@router.post("", status_code=201)
def create_get_together(
    payload: CreateGetTogetherRequest,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    notifier: NotificationDispatcher = Depends(get_notifier),
    events: EventBus = Depends(get_event_bus),
    clock: Clock = Depends(get_clock),
):
    arch = load_member_arch(db, payload.arch_id, user.user_id)
    if payload.invite_all_members and not payload.specific_invitees:
        invitee_ids = [uid for uid in arch.member_ids if uid != user.user_id]
    else:
        outsiders = [uid for uid in payload.specific_invitees if uid not in arch.member_ids]
        if outsiders:
            raise ValidationFailed("All invitees must be members of the arch")
        invitee_ids = [uid for uid in payload.specific_invitees if uid != user.user_id]

    get_together = db.create_get_together(
        arch.arch_id,
        user.user_id,
        payload.title.strip(),
        payload.event_type,
        from_datetime(payload.scheduled_for),
        invitee_ids,
        description=payload.description,
        location=payload.location,
        virtual_link=payload.virtual_link,
        now=clock(),
    )
    logger.info(
        "User %s created get-together %s with %d invitees",
        user.user_id,
        get_together.get_together_id,
        len(get_together.invitees),
    )

    for invitee in get_together.invitees:
        notifier.send_to_user(
            invitee.user_id,
            "🎉 New get-together!",
            f"{user.name} invited you to {get_together.title}",
            {
                "type": "event_created",
                "archId": arch.arch_id,
                "getTogetherId": get_together.get_together_id,
            },
        )
    rendered = _render(db, get_together)
    broadcast(events, arch.arch_id, "new-event", rendered)
    return rendered


@router.put("/{get_together_id}")
def update_get_together(
    get_together_id: str,
    payload: UpdateGetTogetherRequest,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    notifier: NotificationDispatcher = Depends(get_notifier),
    events: EventBus = Depends(get_event_bus),
    clock: Clock = Depends(get_clock),
):
    _, get_together = _load(db, get_together_id, user.user_id)
    if get_together.creator_id != user.user_id:
        raise Forbidden("Only the creator can update this get-together")

    fields = payload.model_dump(
        exclude_none=True, exclude={"event_type", "status", "scheduled_for"}
    )
    if payload.scheduled_for is not None:
        fields["scheduled_for"] = from_datetime(payload.scheduled_for)
    event_type = payload.event_type or get_together.event_type
    location = fields.get("location", get_together.location)
    virtual_link = fields.get("virtual_link", get_together.virtual_link)
    if event_type == EventType.IN_PERSON and not (location or "").strip():
        raise ValidationFailed("Location is required for in-person events")
    if event_type == EventType.VIRTUAL and not (virtual_link or "").strip():
        raise ValidationFailed("Virtual link is required for virtual events")

    updated = db.update_get_together(
        get_together_id,
        event_type=payload.event_type,
        status=payload.status,
        now=clock(),
        **fields,
    )
    for invitee in updated.invitees:
        notifier.send_to_user(
            invitee.user_id,
            "📅 Get-together updated",
            f"{updated.title} was updated",
            {
                "type": "event_updated",
                "archId": updated.arch_id,
                "getTogetherId": get_together_id,
            },
        )
    rendered = _render(db, updated)
    broadcast(events, updated.arch_id, "event-updated", rendered)
    return rendered


@router.delete("/{get_together_id}")
def delete_get_together(
    get_together_id: str,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    notifier: NotificationDispatcher = Depends(get_notifier),
    events: EventBus = Depends(get_event_bus),
):
    arch, get_together = _load(db, get_together_id, user.user_id)
    if get_together.creator_id != user.user_id and not is_admin(arch, user.user_id):
        raise Forbidden("Not authorized to delete this get-together")
    db.delete_get_together(get_together_id)
    logger.info("Get-together %s deleted by %s", get_together_id, user.user_id)

    for invitee in get_together.invitees:
        notifier.send_to_user(
            invitee.user_id,
            "❌ Get-together cancelled",
            f"{get_together.title} has been cancelled",
            {"type": "event_cancelled", "archId": arch.arch_id},
        )
    broadcast(
        events,
        arch.arch_id,
        "event-cancelled",
        {"getTogetherId": get_together_id, "title": get_together.title},
    )
    return {"message": "Get-together deleted successfully"}


@router.post("/{get_together_id}/rsvp")
def rsvp(
    get_together_id: str,
    payload: RsvpRequest,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    notifier: NotificationDispatcher = Depends(get_notifier),
    events: EventBus = Depends(get_event_bus),
    clock: Clock = Depends(get_clock),
):
    arch, get_together = _load(db, get_together_id, user.user_id)
    now = clock()
    if not db.set_rsvp(get_together_id, user.user_id, payload.status, now=now):
        raise HTTPException(status_code=400, detail="You are not invited to this event")
    status_text = "accepted" if payload.status == RsvpStatus.ACCEPTED else "declined"
    notifier.send_to_arch(
        arch.arch_id,
        "🎉 RSVP Update",
        f'{user.name} {status_text} your event "{get_together.title}"',
        exclude_user_id=user.user_id,
        data={
            "type": "event_rsvp",
            "eventId": get_together_id,
            "status": payload.status.value,
            "archId": arch.arch_id,
        },
    )
    broadcast(
        events,
        arch.arch_id,
        "event-rsvp",
        {
            "getTogetherId": get_together_id,
            "userId": user.user_id,
            "status": payload.status.value,
            "respondedAt": to_iso(now),
        },
    )
    return {"message": "RSVP updated", "status": payload.status.value}


@router.post("/{get_together_id}/timeline", status_code=201)
def add_timeline_entry(
    get_together_id: str,
    payload: TimelineEntryRequest,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    events: EventBus = Depends(get_event_bus),
    clock: Clock = Depends(get_clock),
):
    arch, get_together = _load(db, get_together_id, user.user_id)
    invitee = get_together.invitee(user.user_id)
    accepted = invitee is not None and invitee.status == RsvpStatus.ACCEPTED
    if get_together.creator_id != user.user_id and not accepted:
        raise Forbidden("Only the creator or attendees can add to the timeline")
    entry = db.add_timeline_entry(
        get_together_id,
        user.user_id,
        payload.entry_type,
        payload.content.strip(),
        [item.to_record() for item in payload.media],
        now=clock(),
    )
    broadcast(
        events,
        arch.arch_id,
        "timeline-entry",
        {
            "getTogetherId": get_together_id,
            "entry": timeline_entry_json(entry, {user.user_id: user}),
        },
    )
    return _render(db, db.get_get_together(get_together_id))


@router.get("/{get_together_id}/stats")
def get_together_stats(
    get_together_id: str,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
):
    _, get_together = _load(db, get_together_id, user.user_id)
    if get_together.creator_id != user.user_id:
        raise Forbidden("Only the creator can view event stats")
    return rsvp_stats(get_together)
