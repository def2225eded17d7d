"""Role checks on the module facades."""

from decimal import Decimal

import pytest

from cogs_kernel.domain.capability import (
    Action,
    AllowAll,
    Role,
    RoleCapabilityPolicy,
    require_capability,
)
from cogs_kernel.domain.ledger import ItemType, TransactionKind
from cogs_kernel.exceptions import CapabilityDeniedError
from cogs_modules.bom import BomComponentInput, BomService
from cogs_modules.inventory import InventoryService
from cogs_modules.production import ProductionService, RunStatus


@pytest.fixture
def policy():
    return RoleCapabilityPolicy()


@pytest.fixture
def guarded_inventory(session, deterministic_clock, costing_settings, policy):
    return InventoryService(
        session, clock=deterministic_clock, settings=costing_settings,
        capability_policy=policy,
    )


@pytest.fixture
def guarded_production(session, deterministic_clock, costing_settings, policy):
    return ProductionService(
        session, clock=deterministic_clock, settings=costing_settings,
        capability_policy=policy,
    )


class TestRoleCapabilityPolicy:

    @pytest.mark.parametrize("action", list(Action))
    def test_admin_may_do_everything(self, policy, action):
        assert policy.can_perform_action("admin", action.value)

    @pytest.mark.parametrize("role", [None, "auditor", ""])
    def test_unknown_roles_are_denied(self, policy, role):
        assert not policy.can_perform_action(role, Action.RECORD_ADJUSTMENT.value)

    def test_operator_cannot_edit_catalog(self, policy):
        assert policy.can_perform_action("operator", Action.RECEIVE_LOT.value)
        assert not policy.can_perform_action("operator", Action.CREATE_ITEM.value)
        assert not policy.can_perform_action("operator", Action.CANCEL_RUN.value)

    def test_custom_table(self):
        policy = RoleCapabilityPolicy({Role.OPERATOR: frozenset({Action.PLAN_RUN})})
        assert policy.can_perform_action("operator", "plan_run")
        assert not policy.can_perform_action("manager", "plan_run")

    def test_require_capability_raises(self, policy):
        with pytest.raises(CapabilityDeniedError) as exc_info:
            require_capability(policy, "operator", Action.MANAGE_BOM)
        assert exc_info.value.action == "manage_bom"
        assert exc_info.value.role == "operator"

    def test_allow_all(self):
        require_capability(AllowAll(), None, Action.CANCEL_RUN)


class TestFacadeChecks:

    def test_operator_cannot_create_items(self, guarded_inventory, org_id, test_actor_id):
        with pytest.raises(CapabilityDeniedError):
            guarded_inventory.create_item(
                org_id, "X-1", "Thing", ItemType.RAW_MATERIAL, "kg",
                role="operator", actor_id=test_actor_id,
            )

    def test_manager_creates_and_operator_adjusts(
        self, guarded_inventory, org_id, test_actor_id,
    ):
        item = guarded_inventory.create_item(
            org_id, "X-1", "Thing", ItemType.RAW_MATERIAL, "kg",
            role="manager", actor_id=test_actor_id,
        )
        guarded_inventory.record_transaction(
            org_id, item.id, TransactionKind.ADJUSTMENT_COUNT, Decimal("3"),
            role="operator", actor_id=test_actor_id,
        )
        assert guarded_inventory.get_balance(org_id, item.id) == Decimal("3")

    def test_missing_role_is_denied(self, guarded_inventory, org_id, sugar, test_actor_id):
        with pytest.raises(CapabilityDeniedError):
            guarded_inventory.create_lot(
                org_id, sugar.id, None, Decimal("1"), Decimal("1"), actor_id=test_actor_id,
            )

    def test_operator_cannot_cancel_runs(
        self, guarded_production, org_id, bar, test_actor_id,
    ):
        run = guarded_production.create_run(
            org_id, bar.id, Decimal("10"), role="operator", actor_id=test_actor_id,
        )
        with pytest.raises(CapabilityDeniedError):
            guarded_production.cancel_run(
                org_id, run.id, role="operator", actor_id=test_actor_id,
            )
        assert guarded_production.get_run(org_id, run.id).status == RunStatus.PLANNING

        cancelled = guarded_production.cancel_run(
            org_id, run.id, role="manager", actor_id=test_actor_id,
        )
        assert cancelled.status == RunStatus.CANCELLED

    def test_operator_cannot_author_boms(
        self, session, deterministic_clock, policy, org_id, bar, sugar, test_actor_id,
    ):
        boms = BomService(session, clock=deterministic_clock, capability_policy=policy)
        with pytest.raises(CapabilityDeniedError):
            boms.create_bom(
                org_id, bar.id, Decimal("1"), "each",
                [BomComponentInput(sugar.id, Decimal("1"), "kg")],
                role="operator", actor_id=test_actor_id,
            )
