from typing import Optional

from fastapi import APIRouter, Header, Query

from marketplace.auth import assert_actor_authorized
from marketplace.models import (
    Booking,
    BookingActionRequest,
    BookingCreateRequest,
    BookingDeclineRequest,
    BookingReassignRequest,
    BookingStatusChange,
    Message,
    Rating,
    RatingCreateRequest,
    SendMessageRequest,
)
from marketplace.routers.common import raise_http_error
from marketplace.services.booking_lifecycle import booking_lifecycle
from marketplace.services.errors import MarketplaceError
from marketplace.services.message_store import message_store
from marketplace.services.rating_store import rating_store

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", response_model=Booking)
def create_booking(
    payload: BookingCreateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.client_id, authorization=authorization)
    try:
        return booking_lifecycle.create_booking(payload)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/client", response_model=list[Booking])
def list_client_bookings(
    user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    return booking_lifecycle.list_client_bookings(user_id)


@router.get("/provider", response_model=list[Booking])
def list_provider_bookings(
    user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    return booking_lifecycle.list_provider_bookings(user_id)


@router.get("/provider/pending", response_model=list[Booking])
def list_pending_requests(
    user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    return booking_lifecycle.list_pending_requests(user_id)


@router.get("/{booking_id}", response_model=Booking)
def get_booking(
    booking_id: str,
    user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    try:
        return booking_lifecycle.get_booking(booking_id, user_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/{booking_id}/history", response_model=list[BookingStatusChange])
def get_booking_history(
    booking_id: str,
    user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    try:
        return booking_lifecycle.status_history(booking_id, user_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.post("/{booking_id}/accept", response_model=Booking)
def accept_booking(
    booking_id: str,
    payload: BookingActionRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        return booking_lifecycle.accept_booking(booking_id, payload.actor_user_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.post("/{booking_id}/decline", response_model=Booking)
def decline_booking(
    booking_id: str,
    payload: BookingDeclineRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        return booking_lifecycle.decline_booking(booking_id, payload.actor_user_id, payload.reason)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.post("/{booking_id}/complete", response_model=Booking)
def complete_booking(
    booking_id: str,
    payload: BookingActionRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        return booking_lifecycle.complete_booking(booking_id, payload.actor_user_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.post("/{booking_id}/cancel", response_model=Booking)
def cancel_booking(
    booking_id: str,
    payload: BookingActionRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        return booking_lifecycle.cancel_booking(booking_id, payload.actor_user_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.post("/{booking_id}/reassign", response_model=Booking)
def reassign_provider(
    booking_id: str,
    payload: BookingReassignRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        return booking_lifecycle.reassign_provider(booking_id, payload.actor_user_id, payload.provider_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/{booking_id}/messages", response_model=list[Message])
def list_messages(
    booking_id: str,
    user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    try:
        return message_store.list_messages(booking_id, user_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.post("/{booking_id}/messages", response_model=Message)
def send_message(
    booking_id: str,
    payload: SendMessageRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.sender_id, authorization=authorization)
    try:
        return message_store.send_message(booking_id, payload.sender_id, payload.content)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.post("/{booking_id}/rating", response_model=Rating)
def rate_booking(
    booking_id: str,
    payload: RatingCreateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.client_id, authorization=authorization)
    try:
        return rating_store.submit_rating(booking_id, payload.client_id, payload.score, payload.comment)
    except MarketplaceError as exc:
        raise_http_error(exc)
