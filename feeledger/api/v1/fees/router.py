"""Fees router: assign, bulk assign, preview, ledger, records, payments, refunds, waivers, reminders."""

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feeledger.auth.dependencies import get_current_user
from feeledger.auth.rbac import check_permission
from feeledger.auth.schemas import CurrentUser
from feeledger.core.enums import FeeRecordStatus
from feeledger.core.exceptions import ServiceError
from feeledger.db.session import get_db, get_session_factory

from .notifications import ReminderNotifier, get_reminder_notifier
from .orchestrator import BulkAssignment
from .schemas import (
    AssignFeeRequest,
    AssignFeeResult,
    AssignmentOverrides,
    AssignmentResponse,
    AssignmentUpdate,
    BulkAssignRequest,
    BulkAssignResult,
    BulkRemindRequest,
    FeeRecordPage,
    FeeRecordResponse,
    FeeSummary,
    MemberFeeProfile,
    MyFees,
    PauseRequest,
    PaymentCreate,
    PaymentResult,
    RecordFilters,
    RefundCreate,
    RefundResult,
    RemindResult,
    SettlementPreview,
    StudentLedger,
    WaiveRequest,
    WaiveResult,
)
from . import service

router = APIRouter(prefix="/api/v1/fees", tags=["fees"])


# --- Assignment ---
@router.post(
    "/assign",
    response_model=AssignFeeResult,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def assign_fee(
    payload: AssignFeeRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> AssignFeeResult:
    overrides = AssignmentOverrides.model_validate(
        payload.model_dump(exclude={"member_id", "fee_structure_id"})
    )
    try:
        return await service.assign_fee(
            db,
            current_user.coaching_id,
            payload.member_id,
            payload.fee_structure_id,
            overrides,
            actor_id=current_user.id,
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/assign/bulk",
    response_model=BulkAssignResult,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def bulk_assign(
    payload: BulkAssignRequest,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    current_user: CurrentUser = Depends(get_current_user),
) -> BulkAssignResult:
    run = BulkAssignment(
        session_factory,
        current_user.coaching_id,
        payload.fee_structure_id,
        payload.member_ids,
        overrides=payload.overrides,
        member_overrides=payload.member_overrides,
        expected_settlements=payload.expected_settlements,
        actor_id=current_user.id,
    )
    return await run.run()


@router.get(
    "/members/{member_id}/assignment-preview",
    response_model=SettlementPreview,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_assignment_preview(
    member_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> SettlementPreview:
    try:
        return await service.get_assignment_preview(db, current_user.coaching_id, member_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/members/{member_id}/ledger",
    response_model=StudentLedger,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_student_ledger(
    member_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentLedger:
    try:
        return await service.get_member_ledger(db, current_user.coaching_id, member_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/members/{member_id}",
    response_model=MemberFeeProfile,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_member_fee_profile(
    member_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> MemberFeeProfile:
    try:
        return await service.get_member_fee_profile(db, current_user.coaching_id, member_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch(
    "/assignments/{assignment_id}",
    response_model=AssignmentResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def update_assignment(
    assignment_id: UUID,
    payload: AssignmentUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> AssignmentResponse:
    try:
        return await service.update_assignment(
            db, current_user.coaching_id, assignment_id, payload, actor_id=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch(
    "/assignments/{assignment_id}/pause",
    response_model=AssignmentResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def toggle_pause(
    assignment_id: UUID,
    payload: PauseRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> AssignmentResponse:
    try:
        return await service.toggle_pause(
            db, current_user.coaching_id, assignment_id, payload, actor_id=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete(
    "/assignments/{assignment_id}",
    response_model=AssignmentResponse,
    dependencies=[Depends(check_permission("fees", "delete"))],
)
async def remove_assignment(
    assignment_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> AssignmentResponse:
    try:
        return await service.remove_assignment(
            db, current_user.coaching_id, assignment_id, actor_id=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# --- Records ---
@router.get(
    "/records",
    response_model=FeeRecordPage,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_records(
    member_id: Optional[UUID] = Query(None),
    assignment_id: Optional[UUID] = Query(None),
    record_status: Optional[FeeRecordStatus] = Query(None, alias="status"),
    from_date: Optional[date] = Query(None, alias="from"),
    to_date: Optional[date] = Query(None, alias="to"),
    page: int = Query(1, ge=1),
    limit: int = Query(30, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeRecordPage:
    filters = RecordFilters(
        member_id=member_id,
        assignment_id=assignment_id,
        status=record_status,
        from_date=from_date,
        to_date=to_date,
    )
    return await service.list_records(
        db, current_user.coaching_id, filters, page=page, limit=limit
    )


@router.get(
    "/records/{record_id}",
    response_model=FeeRecordResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_record(
    record_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeRecordResponse:
    try:
        return await service.get_record(db, current_user.coaching_id, record_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/records/{record_id}/pay",
    response_model=PaymentResult,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def record_payment(
    record_id: UUID,
    payload: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentResult:
    try:
        return await service.record_payment(
            db, current_user.coaching_id, record_id, payload, actor_id=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/records/{record_id}/refund",
    response_model=RefundResult,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def record_refund(
    record_id: UUID,
    payload: RefundCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> RefundResult:
    try:
        return await service.record_refund(
            db, current_user.coaching_id, record_id, payload, actor_id=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/records/{record_id}/waive",
    response_model=WaiveResult,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def waive_fee(
    record_id: UUID,
    payload: WaiveRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> WaiveResult:
    try:
        return await service.waive_fee(
            db, current_user.coaching_id, record_id, payload, actor_id=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/records/{record_id}/remind",
    response_model=RemindResult,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def send_reminder(
    record_id: UUID,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    notifier: ReminderNotifier = Depends(get_reminder_notifier),
    current_user: CurrentUser = Depends(get_current_user),
) -> RemindResult:
    try:
        result, notices = await service.send_reminder(
            db, current_user.coaching_id, record_id, actor_id=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    background_tasks.add_task(notifier.send, notices)
    return result


@router.post(
    "/bulk-remind",
    response_model=RemindResult,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def bulk_remind(
    payload: BulkRemindRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    notifier: ReminderNotifier = Depends(get_reminder_notifier),
    current_user: CurrentUser = Depends(get_current_user),
) -> RemindResult:
    try:
        result, notices = await service.bulk_remind(
            db, current_user.coaching_id, payload, actor_id=current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if notices:
        background_tasks.add_task(notifier.send, notices)
    return result


@router.get(
    "/summary",
    response_model=FeeSummary,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_fee_summary(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeSummary:
    return await service.get_fee_summary(db, current_user.coaching_id)


# Self-view for students and parents; scoped by the caller's own login, so no fees grant.
@router.get("/my", response_model=MyFees)
async def get_my_fees(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> MyFees:
    return await service.get_my_fees(db, current_user.coaching_id, current_user.id)
