import pytest

from batch_alert.core.errors import AuthorizationError
from batch_alert.core.roles import (
    can_manage_batches,
    can_manage_users,
    can_manage_webhooks,
    capabilities_for,
    is_admin,
)


def test_admin_manages_everything():
    assert is_admin("admin")
    assert can_manage_batches("admin", "marketing", "tech")
    assert can_manage_webhooks("admin", "marketing", "finance")
    assert can_manage_users("admin")


@pytest.mark.parametrize(
    "role, department",
    [
        ("project_lead", "marketing"),
        ("tech_lead", "tech"),
        ("finance_lead", "finance"),
        ("design_lead", "design"),
    ],
)
def test_leads_manage_batches_in_their_own_department(role, department):
    assert can_manage_batches(role, department, department)
    assert can_manage_batches(role, department)
    other = "finance" if department != "finance" else "tech"
    assert not can_manage_batches(role, department, other)
    assert not can_manage_users(role)


def test_design_lead_is_scoped_like_the_other_leads():
    assert can_manage_webhooks("design_lead", "design", "design")
    assert not can_manage_webhooks("design_lead", "design", "tech")
    assert not can_manage_webhooks("design_lead", "design", "finance")
    assert not can_manage_batches("design_lead", "design", "marketing")


def test_project_lead_cannot_manage_webhooks():
    assert can_manage_batches("project_lead", "marketing", "marketing")
    assert not can_manage_webhooks("project_lead", "marketing")
    assert not can_manage_webhooks("project_lead", "marketing", "marketing")


@pytest.mark.parametrize("role", [None, "", "owner", "ADMINISTRATOR"])
def test_unknown_roles_fail_closed(role):
    assert not is_admin(role)
    assert not can_manage_batches(role, "tech", "tech")
    assert not can_manage_webhooks(role, "tech", "tech")
    assert not can_manage_users(role)


def test_unknown_departments_fail_closed():
    assert not can_manage_batches("tech_lead", "engineering", "engineering")
    assert not can_manage_webhooks("tech_lead", None, "tech")
    assert not can_manage_batches("admin", "marketing", "engineering")


def test_inactive_capabilities_grant_nothing():
    capabilities = capabilities_for("admin", "marketing", is_active=False)
    assert capabilities.summary() == {
        "is_admin": False,
        "can_manage_batches": False,
        "can_manage_webhooks": False,
        "can_manage_users": False,
    }
    with pytest.raises(AuthorizationError):
        capabilities.require_user_admin()


def test_capability_guards_raise_for_other_departments():
    capabilities = capabilities_for("finance_lead", "finance")
    capabilities.require_batch_access("finance")
    capabilities.require_webhook_access("finance")
    with pytest.raises(AuthorizationError):
        capabilities.require_batch_access("tech")
    with pytest.raises(AuthorizationError):
        capabilities.require_webhook_access("design")
    assert capabilities.summary() == {
        "is_admin": False,
        "can_manage_batches": True,
        "can_manage_webhooks": True,
        "can_manage_users": False,
    }
