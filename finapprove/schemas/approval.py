from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from finapprove.models.enums import AdminReviewAction, ApprovalAction


class ApprovalActionRequest(BaseModel):
    action: ApprovalAction
    comments: Optional[str] = Field(None, max_length=1000)
    # Level the caller saw as active; a mismatch means someone acted first
    level: str = Field(..., min_length=1, max_length=50)

    @model_validator(mode="after")
    def comments_for_negative_outcomes(self):
        if self.action != ApprovalAction.APPROVED:
            if not self.comments or len(self.comments.strip()) < 3:
                raise ValueError("comments (3-1000 characters) are required to reject or send back")
        return self


class DisbursementRequest(BaseModel):
    payment_reference_number: str = Field(..., min_length=3, max_length=100)
    actual_payment_date: Optional[date] = None
    disbursement_remarks: Optional[str] = Field(None, max_length=1000)


class AdminReviewRequest(BaseModel):
    action: AdminReviewAction
    comments: Optional[str] = Field(None, max_length=1000)


class TransitionResponse(BaseModel):
    id: str
    reference_number: str
    previous_status: str
    status: str
    current_approval_level: Optional[str] = None
    resubmission_count: int
    notifications_sent: int = 0
