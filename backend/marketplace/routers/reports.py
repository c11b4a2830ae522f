from typing import Optional

from fastapi import APIRouter, Header, Query

from marketplace.auth import assert_actor_authorized
from marketplace.models import Report, ReportCreateRequest
from marketplace.routers.common import raise_http_error
from marketplace.services.errors import MarketplaceError
from marketplace.services.report_store import report_store

router = APIRouter(prefix="/reports", tags=["reports"])


@router.post("", response_model=Report)
def create_report(
    payload: ReportCreateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.reporter_id, authorization=authorization)
    try:
        return report_store.create_report(payload)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/my-reports", response_model=list[Report])
def list_my_reports(
    user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=user_id, authorization=authorization)
    return report_store.list_for_user(user_id)
