"""
Remittance API Routes
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.core.validation import amount_validator, sanitized_text_validator
from app.db.database import get_db
from app.db.models.user import UserRole
from app.domain.payout_profile import masked_payout_profile
from app.domain.services.export_service import generate_remittances_excel
from app.domain.services.remittance_service import RemittanceService
from app.state_machine.states import RemittanceStatus

logger = get_logger(__name__)

router = APIRouter()


class RemittanceCreate(BaseModel):
    """Payout request, in the requester's wallet currency"""
    requester_id: int
    amount: Decimal = Field(gt=0)
    note: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        return amount_validator(v)

    @field_validator("note")
    @classmethod
    def sanitize_note(cls, v: str | None) -> str | None:
        return sanitized_text_validator(v, max_length=500)


class RemittanceApprove(BaseModel):
    approver_id: int


class RemittanceSend(BaseModel):
    sender_id: int
    actual_amount: Optional[Decimal] = Field(default=None, gt=0)

    @field_validator("actual_amount")
    @classmethod
    def validate_amount(cls, v: Decimal | None) -> Decimal | None:
        return amount_validator(v)


class ManualReceiptCreate(BaseModel):
    issuer_id: int
    payee_id: int
    amount: Decimal = Field(gt=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    note: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        return amount_validator(v)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str | None) -> str | None:
        return v.upper() if v else v

    @field_validator("note")
    @classmethod
    def sanitize_note(cls, v: str | None) -> str | None:
        return sanitized_text_validator(v, max_length=500)


class RemittanceResponse(BaseModel):
    id: int
    requester_id: int
    role: UserRole
    requested_amount: Decimal
    amount: Decimal
    currency: str
    note: Optional[str] = None
    status: RemittanceStatus
    approved_by_id: Optional[int] = None
    approved_at: Optional[datetime] = None
    sent_by_id: Optional[int] = None
    sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    payout_profile: Optional[dict] = None

    model_config = {"from_attributes": True}


class ManualReceiptResponse(BaseModel):
    id: int
    issuer_id: int
    payee_id: int
    amount: Decimal
    currency: str
    note: Optional[str] = None
    exceeds_available: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


def _to_response(remittance) -> RemittanceResponse:
    """Requester's payout details are shown masked"""
    response = RemittanceResponse.model_validate(remittance)
    if remittance.requester is not None:
        response.payout_profile = masked_payout_profile(remittance.requester.payout_profile)
    return response


@router.post(
    "",
    response_model=RemittanceResponse,
    status_code=201,
    summary="Request a payout",
    responses={400: {"description": "Below minimum or above available balance"}},
)
async def request_remittance(
    data: RemittanceCreate,
    db: AsyncSession = Depends(get_db),
) -> RemittanceResponse:
    remittance = await RemittanceService(db).request(data.requester_id, data.amount, data.note)
    return _to_response(remittance)


@router.get(
    "",
    response_model=List[RemittanceResponse],
    summary="List remittances",
)
async def list_remittances(
    requester_id: Optional[int] = None,
    status: Optional[RemittanceStatus] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> List[RemittanceResponse]:
    remittances = await RemittanceService(db).list_remittances(
        requester_id=requester_id, status=status, limit=limit, offset=offset
    )
    return [_to_response(r) for r in remittances]


@router.get(
    "/export",
    summary="Export remittances to XLSX",
    response_class=Response,
)
async def export_remittances(
    requester_id: Optional[int] = None,
    status: Optional[RemittanceStatus] = None,
    db: AsyncSession = Depends(get_db),
) -> Response:
    remittances = await RemittanceService(db).list_remittances(
        requester_id=requester_id, status=status, limit=10000
    )
    return Response(
        content=generate_remittances_excel(remittances),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": 'attachment; filename="remittances.xlsx"'},
    )


@router.post(
    "/manual-receipts",
    response_model=ManualReceiptResponse,
    status_code=201,
    summary="Issue a receipt for an off-ledger payout",
    description="Never debits the wallet. Receipts above the balance are flagged.",
)
async def issue_manual_receipt(
    data: ManualReceiptCreate,
    db: AsyncSession = Depends(get_db),
) -> ManualReceiptResponse:
    return await RemittanceService(db).issue_manual_receipt(
        issuer_id=data.issuer_id,
        payee_id=data.payee_id,
        amount=data.amount,
        currency=data.currency,
        note=data.note,
    )


@router.get(
    "/{remittance_id}",
    response_model=RemittanceResponse,
    summary="Get remittance by ID",
)
async def get_remittance(
    remittance_id: int,
    db: AsyncSession = Depends(get_db),
) -> RemittanceResponse:
    return _to_response(await RemittanceService(db).get_remittance(remittance_id))


@router.post(
    "/{remittance_id}/approve",
    response_model=RemittanceResponse,
    summary="Approve a pending remittance",
)
async def approve_remittance(
    remittance_id: int,
    data: RemittanceApprove,
    db: AsyncSession = Depends(get_db),
) -> RemittanceResponse:
    return _to_response(await RemittanceService(db).approve(remittance_id, data.approver_id))


@router.post(
    "/{remittance_id}/send",
    response_model=RemittanceResponse,
    summary="Mark a remittance as sent",
    description="Re-checks the balance and queues the payout receipt.",
)
async def send_remittance(
    remittance_id: int,
    data: RemittanceSend,
    db: AsyncSession = Depends(get_db),
) -> RemittanceResponse:
    remittance = await RemittanceService(db).send(
        remittance_id, data.sender_id, actual_amount=data.actual_amount
    )
    return _to_response(remittance)
