"""Central model registry. Import every model so Alembic autogenerate sees them."""

from finapprove.database import Base  # noqa: F401

from finapprove.models.user import User  # noqa: F401
from finapprove.models.finance_request import FinanceRequest  # noqa: F401
from finapprove.models.approval import ApprovalStep, ApprovalActionRecord  # noqa: F401
from finapprove.models.sla_log import SLALog  # noqa: F401
from finapprove.models.notification import AppNotification  # noqa: F401
