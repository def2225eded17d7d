"""CapabilityPolicy -- which roles may perform which inventory actions."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import FrozenSet, Protocol

from cogs_kernel.exceptions import CapabilityDeniedError
from cogs_kernel.logging_config import get_logger

logger = get_logger("domain.capability")


class Role(str, Enum):
    """Roles supplied by the identity collaborator."""

    ADMIN = "admin"
    MANAGER = "manager"
    OPERATOR = "operator"


class Action(str, Enum):
    """Mutating actions exposed by the module facades."""

    # Catalog
    CREATE_ITEM = "create_item"
    UPDATE_ITEM = "update_item"
    SET_ITEM_STATUS = "set_item_status"

    # Ledger and lots
    RECEIVE_LOT = "receive_lot"
    RECORD_ADJUSTMENT = "record_adjustment"

    # BOM authoring
    MANAGE_BOM = "manage_bom"

    # Production
    PLAN_RUN = "plan_run"
    EXECUTE_RUN = "execute_run"
    CANCEL_RUN = "cancel_run"
    ANNOTATE_RUN = "annotate_run"


class CapabilityPolicy(Protocol):
    """Decides whether a role may perform an action."""

    def can_perform_action(self, role: str | None, action: str) -> bool:
        ...


class AllowAll:
    """Policy used when the caller injects none."""

    def can_perform_action(self, role: str | None, action: str) -> bool:
        return True


_OPERATOR_ACTIONS: FrozenSet[Action] = frozenset({
    Action.RECEIVE_LOT,
    Action.RECORD_ADJUSTMENT,
    Action.PLAN_RUN,
    Action.EXECUTE_RUN,
    Action.ANNOTATE_RUN,
})

_MANAGER_ACTIONS: FrozenSet[Action] = _OPERATOR_ACTIONS | frozenset({
    Action.CREATE_ITEM,
    Action.UPDATE_ITEM,
    Action.SET_ITEM_STATUS,
    Action.MANAGE_BOM,
    Action.CANCEL_RUN,
})

DEFAULT_ROLE_CAPABILITIES: Mapping[Role, FrozenSet[Action]] = {
    Role.OPERATOR: _OPERATOR_ACTIONS,
    Role.MANAGER: _MANAGER_ACTIONS,
    Role.ADMIN: frozenset(Action),
}


class RoleCapabilityPolicy:
    """
    Static role-to-action table.

    Operators record receipts, adjustments and production.  Catalog edits,
    status changes, BOM authoring and run cancellation need a manager or
    admin.  Unknown or missing roles are denied everything.
    """

    def __init__(
        self,
        capabilities: Mapping[Role, FrozenSet[Action]] | None = None,
    ):
        self._capabilities = dict(capabilities or DEFAULT_ROLE_CAPABILITIES)

    def can_perform_action(self, role: str | None, action: str) -> bool:
        if role is None:
            return False
        try:
            role_key = Role(role)
            action_key = Action(action)
        except ValueError:
            return False
        return action_key in self._capabilities.get(role_key, frozenset())


def require_capability(
    policy: CapabilityPolicy,
    role: str | None,
    action: Action | str,
) -> None:
    """
    Raise CapabilityDeniedError unless ``policy`` allows ``action``.

    Raises:
        CapabilityDeniedError: When the policy refuses the action.
    """
    action_value = action.value if isinstance(action, Action) else action
    if not policy.can_perform_action(role, action_value):
        logger.warning(
            "capability_denied",
            extra={"role": role, "action": action_value},
        )
        raise CapabilityDeniedError(role, action_value)
