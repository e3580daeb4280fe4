"""
Finance request CRUD: reference numbers, create/edit with server-side totals,
soft delete, lookup by id or reference number, visibility and edit rules.
"""

from datetime import datetime
from typing import Optional
import uuid

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from finapprove.config import settings
from finapprove.exceptions import (
    AuthorizationError,
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from finapprove.models.enums import RequestStatus, TERMINAL_STATUSES
from finapprove.models.finance_request import FinanceRequest
from finapprove.services.auth_service import Actor
from finapprove.services.level_chain import ApprovalChain, get_approval_chain
from finapprove.services.money_service import check_tds_within_gross, compute_totals
from finapprove.services.permission_service import ADMIN, has_permission, levels_for_role

logger = structlog.get_logger()

EDITABLE_FIELDS = (
    "department",
    "entity",
    "cost_center",
    "payment_type",
    "payment_mode",
    "purpose",
    "vendor_name",
    "vendor_code",
    "vendor_bank_name",
    "vendor_bank_account",
    "vendor_bank_ifsc",
    "vendor_upi_id",
    "invoice_number",
    "invoice_date",
    "base_amount",
    "gst_applicable",
    "gst_percentage",
    "tds_applicable",
    "tds_percentage",
    "currency",
)

# Columns that may not be cleared by an edit
REQUIRED_FIELDS = ("department", "payment_type", "payment_mode", "purpose", "base_amount", "currency")

MONEY_FIELDS = ("base_amount", "gst_applicable", "gst_percentage", "tds_applicable", "tds_percentage")

FINANCE_EDIT_STATUS = "PENDING_FINANCE_VETTING"

REFERENCE_NUMBER_ATTEMPTS = 5


# ---------- reference numbers ----------


async def generate_reference_number(
    session: AsyncSession, now: Optional[datetime] = None, offset: int = 0
) -> str:
    """
    FIN-YYMM-NNNNNN, sequential over all requests ever created. ``offset``
    skips ahead past numbers a concurrent create has already taken.
    """
    now = now or datetime.utcnow()
    result = await session.execute(select(func.count(FinanceRequest.id)))
    count = (result.scalar() or 0) + 1 + offset
    return f"{settings.REFERENCE_PREFIX}-{now:%y%m}-{count:06d}"


async def _reference_number_taken(session: AsyncSession, reference_number: str) -> bool:
    result = await session.execute(
        select(FinanceRequest.id).where(FinanceRequest.reference_number == reference_number)
    )
    return result.first() is not None


async def _insert_with_reference_number(
    session: AsyncSession, request: FinanceRequest, now: datetime
) -> None:
    """Insert under a savepoint, moving to the next number when two creates collide."""
    for attempt in range(REFERENCE_NUMBER_ATTEMPTS):
        request.reference_number = await generate_reference_number(session, now, offset=attempt)
        try:
            async with session.begin_nested():
                session.add(request)
                await session.flush()
            return
        except IntegrityError:
            if not await _reference_number_taken(session, request.reference_number):
                raise
            logger.warning(
                "reference_number_collision",
                reference_number=request.reference_number,
                attempt=attempt + 1,
            )
    raise ConcurrencyConflictError("FinanceRequest", request.reference_number)


# ---------- lookup ----------


def _parse_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


async def get_request(
    session: AsyncSession, id_or_reference, for_update: bool = False
) -> FinanceRequest:
    """Find a live request by id or reference number. Raises NotFoundError."""
    request_id = (
        id_or_reference if isinstance(id_or_reference, uuid.UUID) else _parse_uuid(id_or_reference)
    )
    stmt = select(FinanceRequest).where(FinanceRequest.is_deleted == False)  # noqa: E712
    if request_id is not None:
        stmt = stmt.where(FinanceRequest.id == request_id)
    else:
        stmt = stmt.where(FinanceRequest.reference_number == str(id_or_reference))
    if for_update:
        stmt = stmt.with_for_update()

    result = await session.execute(stmt)
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFoundError("FinanceRequest", str(id_or_reference))
    return request


# ---------- access rules ----------


def can_view(actor: Actor, request: FinanceRequest) -> bool:
    if request.requestor_id == actor.id:
        return True
    # Drafts are private to the requestor
    if request.status == RequestStatus.DRAFT:
        return False
    if has_permission(actor.role, "request:view:all"):
        return True
    if has_permission(actor.role, "request:view:department"):
        return bool(actor.department) and actor.department == request.department
    return False


def can_edit(actor: Actor, request: FinanceRequest) -> bool:
    if request.status in TERMINAL_STATUSES:
        return False
    if actor.role == ADMIN:
        return True
    if request.requestor_id == actor.id and request.status in (
        RequestStatus.DRAFT,
        RequestStatus.SENT_BACK,
    ):
        return True
    return request.status == FINANCE_EDIT_STATUS and has_permission(
        actor.role, "request:edit:financial"
    )


# ---------- money ----------


def _check_tax_flags(values: dict) -> None:
    if values.get("gst_applicable") and values.get("gst_percentage") is None:
        raise ValidationError.for_field(
            "gst_percentage", "GST percentage is required when GST is applicable"
        )
    if values.get("tds_applicable") and values.get("tds_percentage") is None:
        raise ValidationError.for_field(
            "tds_percentage", "TDS percentage is required when TDS is applicable"
        )


def apply_totals(request: FinanceRequest, values: dict) -> None:
    """Recompute GST/TDS/total from the money inputs. Client totals are never trusted."""
    _check_tax_flags(values)
    totals = compute_totals(
        values["base_amount"],
        bool(values.get("gst_applicable")),
        values.get("gst_percentage"),
        bool(values.get("tds_applicable")),
        values.get("tds_percentage"),
    )
    check_tds_within_gross(totals)
    request.base_amount = totals.base_amount
    request.gst_amount = totals.gst_amount
    request.tds_amount = totals.tds_amount
    request.total_amount = totals.total_amount


# ---------- mutations ----------


async def create_request(
    session: AsyncSession,
    actor: Actor,
    data: dict,
    now: Optional[datetime] = None,
) -> FinanceRequest:
    now = now or datetime.utcnow()
    department = data.get("department") or actor.department
    if not department:
        raise ValidationError.for_field("department", "Department is required")

    request = FinanceRequest(
        id=uuid.uuid4(),
        requestor_id=actor.id,
        status=RequestStatus.DRAFT,
        current_approval_level=None,
        resubmission_count=0,
        ledger_generation=0,
        is_deleted=False,
        created_at=now,
        updated_at=now,
    )
    for name in EDITABLE_FIELDS:
        if name in data and data[name] is not None:
            setattr(request, name, data[name])
    request.department = department
    request.gst_applicable = bool(data.get("gst_applicable"))
    request.tds_applicable = bool(data.get("tds_applicable"))
    if not data.get("gst_applicable"):
        request.gst_percentage = None
    if not data.get("tds_applicable"):
        request.tds_percentage = None
    apply_totals(request, data)

    await _insert_with_reference_number(session, request, now)

    logger.info(
        "finance_request_created",
        finance_request_id=str(request.id),
        reference_number=request.reference_number,
        requestor_id=str(actor.id),
        total_amount=str(request.total_amount),
    )
    return request


async def update_request(
    session: AsyncSession,
    request: FinanceRequest,
    actor: Actor,
    changes: dict,
    now: Optional[datetime] = None,
) -> FinanceRequest:
    if not can_edit(actor, request):
        logger.warning(
            "finance_request_edit_denied",
            finance_request_id=str(request.id),
            actor_id=str(actor.id),
            role=actor.role,
            status=request.status,
        )
        raise AuthorizationError("You cannot edit this request in its current status")

    changes = {
        k: v
        for k, v in changes.items()
        if k in EDITABLE_FIELDS and not (v is None and k in REQUIRED_FIELDS)
    }
    for name, value in changes.items():
        setattr(request, name, value)
    if not request.gst_applicable:
        request.gst_percentage = None
    if not request.tds_applicable:
        request.tds_percentage = None

    if any(name in changes for name in MONEY_FIELDS):
        apply_totals(request, {name: getattr(request, name) for name in MONEY_FIELDS})

    request.updated_at = now or datetime.utcnow()
    await session.flush()

    logger.info(
        "finance_request_updated",
        finance_request_id=str(request.id),
        actor_id=str(actor.id),
        fields=sorted(changes),
    )
    return request


async def soft_delete_request(
    session: AsyncSession, request: FinanceRequest, actor: Actor
) -> None:
    if request.requestor_id != actor.id:
        logger.warning(
            "finance_request_delete_denied",
            finance_request_id=str(request.id),
            actor_id=str(actor.id),
        )
        raise AuthorizationError("Only the requestor can delete a request")
    if request.status != RequestStatus.DRAFT:
        raise InvalidTransitionError(
            request.status, "delete", message="Only draft requests can be deleted"
        )
    request.is_deleted = True
    request.updated_at = datetime.utcnow()
    await session.flush()
    logger.info("finance_request_deleted", finance_request_id=str(request.id))


# ---------- listing ----------


def pending_statuses_for(actor: Actor, chain: Optional[ApprovalChain] = None) -> list[str]:
    """PENDING_<LEVEL> statuses in the configured chain that ``actor`` may act on."""
    chain = chain or get_approval_chain()
    allowed = set(levels_for_role(actor.role))
    return [lvl.pending_status for lvl in chain.levels if lvl.level in allowed]


def visibility_filters(actor: Actor) -> list:
    """WHERE clauses limiting live requests to those ``actor`` may see. Drafts stay private."""
    filters = [FinanceRequest.is_deleted == False]  # noqa: E712
    if has_permission(actor.role, "request:view:all"):
        filters.append(
            or_(
                FinanceRequest.status != RequestStatus.DRAFT,
                FinanceRequest.requestor_id == actor.id,
            )
        )
    elif has_permission(actor.role, "request:view:department") and actor.department:
        filters.append(
            or_(
                FinanceRequest.requestor_id == actor.id,
                (FinanceRequest.department == actor.department)
                & (FinanceRequest.status != RequestStatus.DRAFT),
            )
        )
    else:
        filters.append(FinanceRequest.requestor_id == actor.id)
    return filters


async def list_requests(
    session: AsyncSession,
    actor: Actor,
    page: int = 1,
    limit: int = 20,
    status: Optional[str] = None,
    department: Optional[str] = None,
    search: Optional[str] = None,
    pending_approvals: bool = False,
) -> tuple[list[FinanceRequest], int]:
    if pending_approvals:
        statuses = pending_statuses_for(actor)
        if not statuses:
            return [], 0
        filters = [
            FinanceRequest.is_deleted == False,  # noqa: E712
            FinanceRequest.status.in_(statuses),
            FinanceRequest.requestor_id != actor.id,
        ]
    else:
        filters = visibility_filters(actor)

    if status:
        filters.append(FinanceRequest.status == status)
    if department:
        filters.append(FinanceRequest.department == department)
    if search:
        pattern = f"%{search}%"
        filters.append(
            or_(
                FinanceRequest.reference_number.ilike(pattern),
                FinanceRequest.purpose.ilike(pattern),
                FinanceRequest.vendor_name.ilike(pattern),
            )
        )

    total = (
        await session.execute(select(func.count(FinanceRequest.id)).where(*filters))
    ).scalar() or 0
    result = await session.execute(
        select(FinanceRequest)
        .where(*filters)
        .order_by(FinanceRequest.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total
