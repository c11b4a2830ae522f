from typing import Optional

from fastapi import APIRouter, Depends, Query

from marketplace.auth import require_admin
from marketplace.models import (
    AdminBookingStatusRequest,
    Booking,
    BookingPage,
    DashboardStats,
    ProviderProfile,
    ProviderVerifyRequest,
    Report,
    ReportPage,
    ReportStatistics,
    ReportStatus,
    ReportStatusUpdateRequest,
)
from marketplace.routers.common import raise_http_error
from marketplace.services.booking_lifecycle import booking_lifecycle
from marketplace.services.errors import MarketplaceError
from marketplace.services.provider_directory import provider_directory
from marketplace.services.report_store import report_store

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/bookings", response_model=BookingPage)
def list_bookings(
    page: int = Query(default=0, ge=0),
    size: int = Query(default=20, ge=1, le=100),
    admin_id: str = Depends(require_admin),
):
    try:
        return booking_lifecycle.list_all_bookings(page=page, size=size)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.put("/bookings/{booking_id}/status", response_model=Booking)
def force_booking_status(
    booking_id: str,
    payload: AdminBookingStatusRequest,
    admin_id: str = Depends(require_admin),
):
    try:
        return booking_lifecycle.admin_set_status(booking_id, payload.status, admin_id=admin_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/providers", response_model=list[ProviderProfile])
def list_providers(admin_id: str = Depends(require_admin)):
    return provider_directory.list_profiles()


@router.put("/providers/{profile_id}/verify", response_model=ProviderProfile)
def verify_provider(
    profile_id: str,
    payload: ProviderVerifyRequest,
    admin_id: str = Depends(require_admin),
):
    try:
        return provider_directory.set_verification(profile_id, payload.verified, payload.notes)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/reports", response_model=ReportPage)
def list_reports(
    page: int = Query(default=0, ge=0),
    size: int = Query(default=20, ge=1, le=100),
    status: Optional[ReportStatus] = Query(default=None),
    admin_id: str = Depends(require_admin),
):
    try:
        return report_store.list_reports(page=page, size=size, status=status)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/reports/status/{status}", response_model=ReportPage)
def list_reports_by_status(
    status: ReportStatus,
    page: int = Query(default=0, ge=0),
    size: int = Query(default=20, ge=1, le=100),
    admin_id: str = Depends(require_admin),
):
    try:
        return report_store.list_reports(page=page, size=size, status=status)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/reports/statistics", response_model=ReportStatistics)
def report_statistics(admin_id: str = Depends(require_admin)):
    return report_store.statistics()


@router.get("/reports/{report_id}", response_model=Report)
def get_report(report_id: str, admin_id: str = Depends(require_admin)):
    try:
        return report_store.get_report(report_id)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.put("/reports/{report_id}/status", response_model=Report)
def update_report_status(
    report_id: str,
    payload: ReportStatusUpdateRequest,
    admin_id: str = Depends(require_admin),
):
    try:
        return report_store.update_status(report_id, admin_id, payload.status, payload.admin_notes)
    except MarketplaceError as exc:
        raise_http_error(exc)


@router.get("/dashboard/stats", response_model=DashboardStats)
def dashboard_stats(admin_id: str = Depends(require_admin)):
    reports = report_store.statistics()
    awaiting = sum(1 for profile in provider_directory.list_profiles() if not profile.is_verified)
    return DashboardStats(
        reports=reports,
        bookings_by_status=booking_lifecycle.count_by_status(),
        providers_awaiting_verification=awaiting,
        pending_actions=reports.pending + awaiting,
    )
