"""
Unit tests for plan_transition, the pure workflow transition table.

No database: every case is (chain, current status, action) -> plan or error.
"""

import pytest

from finapprove.config import Settings
from finapprove.exceptions import InvalidTransitionError
from finapprove.models.enums import AdminReviewAction, ApprovalAction, RequestStatus
from finapprove.services.level_chain import build_chain
from finapprove.services.workflow_service import DISBURSE, RESUBMIT, SUBMIT, plan_transition


@pytest.fixture
def chain():
    return build_chain(Settings(APPROVAL_CHAIN="standard"))


@pytest.fixture
def short_chain():
    return build_chain(Settings(APPROVAL_LEVELS=["FINANCE_VETTING", "DIRECTOR"]))


# ---------------------------------------------------------------------------
# submit / resubmit
# ---------------------------------------------------------------------------


def test_submit_goes_to_first_level(chain):
    plan = plan_transition(chain, RequestStatus.DRAFT, SUBMIT)
    assert plan.next_status == "PENDING_FINANCE_VETTING"
    assert plan.next_level == "FINANCE_VETTING"
    assert not plan.is_terminal


def test_resubmit_goes_to_first_level(chain):
    plan = plan_transition(chain, RequestStatus.SENT_BACK, RESUBMIT)
    assert plan.next_status == "PENDING_FINANCE_VETTING"


@pytest.mark.parametrize(
    "status,action",
    [
        (RequestStatus.SENT_BACK, SUBMIT),
        ("PENDING_DIRECTOR", SUBMIT),
        (RequestStatus.DRAFT, RESUBMIT),
        (RequestStatus.APPROVED, RESUBMIT),
    ],
)
def test_submit_from_wrong_status(chain, status, action):
    with pytest.raises(InvalidTransitionError):
        plan_transition(chain, status, action)


# ---------------------------------------------------------------------------
# level decisions
# ---------------------------------------------------------------------------


def test_approve_moves_to_next_level(chain):
    plan = plan_transition(chain, "PENDING_FINANCE_VETTING", ApprovalAction.APPROVED)
    assert plan.next_status == "PENDING_FINANCE_CONTROLLER"
    assert plan.next_level == "FINANCE_CONTROLLER"
    assert plan.activate_next is True


def test_approve_before_disbursement_lands_in_approved(chain):
    plan = plan_transition(chain, "PENDING_MD", ApprovalAction.APPROVED)
    assert plan.next_status == RequestStatus.APPROVED
    assert plan.next_level is None
    assert plan.activate_next is False


def test_approve_at_disbursement_level_is_terminal(chain):
    plan = plan_transition(chain, "PENDING_DISBURSEMENT", ApprovalAction.APPROVED)
    assert plan.next_status == RequestStatus.DISBURSED
    assert plan.is_terminal


def test_approve_last_level_without_disbursement(short_chain):
    plan = plan_transition(short_chain, "PENDING_DIRECTOR", ApprovalAction.APPROVED)
    assert plan.next_status == RequestStatus.APPROVED
    assert plan.next_level is None


def test_reject_is_terminal_and_send_back_is_not(chain):
    rejected = plan_transition(chain, "PENDING_DIRECTOR", ApprovalAction.REJECTED)
    sent_back = plan_transition(chain, "PENDING_DIRECTOR", ApprovalAction.SENT_BACK)
    assert rejected.next_status == RequestStatus.REJECTED
    assert rejected.is_terminal
    assert sent_back.next_status == RequestStatus.SENT_BACK
    assert not sent_back.is_terminal


@pytest.mark.parametrize(
    "status",
    [RequestStatus.DRAFT, RequestStatus.PENDING_ADMIN_REVIEW, RequestStatus.APPROVED, "PENDING_CEO"],
)
def test_decision_needs_a_level_pending_status(chain, status):
    with pytest.raises(InvalidTransitionError):
        plan_transition(chain, status, ApprovalAction.APPROVED)


def test_level_outside_configured_chain_rejected(short_chain):
    with pytest.raises(InvalidTransitionError):
        plan_transition(short_chain, "PENDING_MD", ApprovalAction.APPROVED)


# ---------------------------------------------------------------------------
# disbursement and admin review
# ---------------------------------------------------------------------------


def test_disburse_only_from_approved(chain):
    assert plan_transition(chain, RequestStatus.APPROVED, DISBURSE).next_status == RequestStatus.DISBURSED
    with pytest.raises(InvalidTransitionError):
        plan_transition(chain, "PENDING_MD", DISBURSE)


@pytest.mark.parametrize("status", [RequestStatus.PENDING_ADMIN_REVIEW, "PENDING_DIRECTOR"])
def test_admin_approve_and_reject(chain, status):
    assert plan_transition(chain, status, AdminReviewAction.APPROVE).next_status == RequestStatus.DISBURSED
    assert plan_transition(chain, status, AdminReviewAction.REJECT).next_status == RequestStatus.REJECTED


def test_admin_decision_on_draft_rejected(chain):
    with pytest.raises(InvalidTransitionError):
        plan_transition(chain, RequestStatus.DRAFT, AdminReviewAction.APPROVE)


def test_allow_resubmission_only_from_admin_review(chain):
    plan = plan_transition(chain, RequestStatus.PENDING_ADMIN_REVIEW, AdminReviewAction.ALLOW_RESUBMISSION)
    assert plan.next_status == RequestStatus.SENT_BACK
    with pytest.raises(InvalidTransitionError):
        plan_transition(chain, "PENDING_MD", AdminReviewAction.ALLOW_RESUBMISSION)


def test_unknown_action(chain):
    with pytest.raises(InvalidTransitionError):
        plan_transition(chain, RequestStatus.DRAFT, "ESCALATE")
