from typing import List, Optional
from pydantic import BaseModel


class NotificationResponse(BaseModel):
    id: str
    title: str
    message: str
    type: str
    finance_request_id: Optional[str] = None
    is_read: bool = False
    created_at: str

    model_config = {"from_attributes": True}


class SLAAlert(BaseModel):
    finance_request_id: str
    reference_number: str
    level: str
    sla_due_at: str
    sla_status: str
    hours_remaining: float


class DashboardResponse(BaseModel):
    total_requests: int
    draft: int
    pending: int
    approved: int
    rejected: int
    sent_back: int
    disbursed: int
    admin_review: int
    total_amount: str
    sla_breached_count: int
    my_pending_approvals: int
    sla_alerts: List[SLAAlert] = []
