"""
Module: cogs_kernel.selectors.ledger_selector
Responsibility: Read-only ledger queries: cached and live balances, cache
    verification, paginated transaction history, and transactions linked to a
    reference document (e.g. a production run).
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ value types and selectors/base.py.

Invariants enforced:
    - Live balances are derived from transaction rows at query time and are
      the authority whenever they disagree with the cached value.
    - History ordering is deterministic: transaction_date descending, then
      ledger sequence descending.

Failure modes:
    - ItemNotFoundError / CrossTenantError for unknown or foreign items.
    - InvalidFieldError on page < 1 or page_size < 1.

Audit relevance:
    find_balance_discrepancies() is the recalculation check over the whole
    catalog of an organization: any row it returns means the cached stock
    drifted from the append-only log.
"""

from collections import defaultdict
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from cogs_kernel.domain.ledger import (
    BalanceDiscrepancy,
    HistoryFilter,
    InventoryTransaction,
    TransactionKind,
    TransactionPage,
)
from cogs_kernel.exceptions import InvalidFieldError, ItemNotFoundError
from cogs_kernel.models.item import ItemModel
from cogs_kernel.models.transaction import InventoryTransactionModel
from cogs_kernel.selectors.base import BaseSelector, load_owned

_ZERO = Decimal("0")


class LedgerSelector(BaseSelector[InventoryTransactionModel]):
    """
    Read access to the inventory ledger.

    Contract:
        Every method takes the caller's organization id and never returns
        rows belonging to another organization.
    """

    def get_balance(self, organization_id: UUID, item_id: UUID) -> Decimal:
        """Cached current stock of an item."""
        item = load_owned(
            self.session, ItemModel, item_id, organization_id, ItemNotFoundError
        )
        return item.current_stock

    def compute_balance(self, organization_id: UUID, item_id: UUID) -> Decimal:
        """Live stock: the sum of every transaction quantity for the item."""
        load_owned(self.session, ItemModel, item_id, organization_id, ItemNotFoundError)
        quantities = self.session.execute(
            select(InventoryTransactionModel.quantity).where(
                InventoryTransactionModel.organization_id == organization_id,
                InventoryTransactionModel.item_id == item_id,
            )
        ).scalars()
        return sum(quantities, _ZERO)

    def verify_balance(self, organization_id: UUID, item_id: UUID) -> bool:
        """True when the cached stock equals the live ledger sum."""
        return self.get_balance(organization_id, item_id) == self.compute_balance(
            organization_id, item_id
        )

    def find_balance_discrepancies(self, organization_id: UUID) -> list[BalanceDiscrepancy]:
        """Every item of the organization whose cached stock disagrees with the ledger."""
        sums: dict[UUID, Decimal] = defaultdict(lambda: _ZERO)
        rows = self.session.execute(
            select(
                InventoryTransactionModel.item_id,
                InventoryTransactionModel.quantity,
            ).where(InventoryTransactionModel.organization_id == organization_id)
        )
        for item_id, quantity in rows:
            sums[item_id] += quantity

        items = self.session.execute(
            select(ItemModel)
            .where(ItemModel.organization_id == organization_id)
            .order_by(ItemModel.sku)
        ).scalars()

        discrepancies = []
        for item in items:
            ledger_stock = sums.get(item.id, _ZERO)
            if item.current_stock != ledger_stock:
                discrepancies.append(
                    BalanceDiscrepancy(
                        item_id=item.id,
                        sku=item.sku,
                        cached_stock=item.current_stock,
                        ledger_stock=ledger_stock,
                    )
                )
        return discrepancies

    def get_history(
        self,
        organization_id: UUID,
        item_id: UUID | None = None,
        filters: HistoryFilter | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> TransactionPage:
        """
        One page of ledger history, newest first.

        The requested page size is honored exactly.  ``page`` is 1-based.
        """
        if page < 1:
            raise InvalidFieldError("page", "must be >= 1")
        if page_size < 1:
            raise InvalidFieldError("page_size", "must be >= 1")
        if item_id is not None:
            load_owned(self.session, ItemModel, item_id, organization_id, ItemNotFoundError)

        conditions = [InventoryTransactionModel.organization_id == organization_id]
        if item_id is not None:
            conditions.append(InventoryTransactionModel.item_id == item_id)
        conditions.extend(self._filter_conditions(filters or HistoryFilter()))

        total = self.session.execute(
            select(func.count()).select_from(InventoryTransactionModel).where(*conditions)
        ).scalar_one()

        rows = self.session.execute(
            select(InventoryTransactionModel)
            .where(*conditions)
            .order_by(
                InventoryTransactionModel.transaction_date.desc(),
                InventoryTransactionModel.sequence.desc(),
            )
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).scalars()

        return TransactionPage(
            items=tuple(row.to_dto() for row in rows),
            total=total,
            page=page,
            page_size=page_size,
        )

    @staticmethod
    def _filter_conditions(filters: HistoryFilter) -> list:
        model = InventoryTransactionModel
        conditions = []
        if filters.kind is not None:
            conditions.append(model.kind == TransactionKind(filters.kind).value)
        if filters.lot_number is not None:
            conditions.append(model.lot_number == filters.lot_number)
        if filters.lot_id is not None:
            conditions.append(model.lot_id == filters.lot_id)
        if filters.date_from is not None:
            conditions.append(model.transaction_date >= filters.date_from)
        if filters.date_to is not None:
            conditions.append(model.transaction_date <= filters.date_to)
        if filters.reference_type is not None:
            conditions.append(model.reference_type == filters.reference_type)
        if filters.reference_id is not None:
            conditions.append(model.reference_id == filters.reference_id)
        return conditions

    def transactions_for_reference(
        self,
        organization_id: UUID,
        reference_type: str,
        reference_id: UUID,
        kind: TransactionKind | None = None,
    ) -> list[InventoryTransaction]:
        """All transactions posted on behalf of one document, oldest first."""
        stmt = select(InventoryTransactionModel).where(
            InventoryTransactionModel.organization_id == organization_id,
            InventoryTransactionModel.reference_type == reference_type,
            InventoryTransactionModel.reference_id == reference_id,
        )
        if kind is not None:
            stmt = stmt.where(InventoryTransactionModel.kind == kind.value)
        stmt = stmt.order_by(InventoryTransactionModel.sequence)
        return [row.to_dto() for row in self.session.execute(stmt).scalars()]
