"""
Module: cogs_kernel.selectors.item_selector
Responsibility: Read-only catalog queries: item by id, item by SKU, and
    filtered listing (type, status, category, name/SKU search, low stock).
Architecture position: Kernel > Selectors.

Failure modes:
    - ItemNotFoundError / CrossTenantError from get_item().
    - find_by_sku() returns None for unknown SKUs.
"""

from uuid import UUID

from sqlalchemy import func, or_, select

from cogs_kernel.domain.ledger import Item, ItemFilter
from cogs_kernel.exceptions import ItemNotFoundError
from cogs_kernel.models.item import ItemModel
from cogs_kernel.selectors.base import BaseSelector, load_owned


class ItemSelector(BaseSelector[ItemModel]):
    """Catalog reads, scoped to one organization per call."""

    def get_item(self, organization_id: UUID, item_id: UUID) -> Item:
        return load_owned(
            self.session, ItemModel, item_id, organization_id, ItemNotFoundError
        ).to_dto()

    def find_by_sku(self, organization_id: UUID, sku: str) -> Item | None:
        row = self.session.execute(
            select(ItemModel).where(
                ItemModel.organization_id == organization_id,
                ItemModel.sku == sku.strip(),
            )
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def list_items(
        self,
        organization_id: UUID,
        filters: ItemFilter | None = None,
    ) -> list[Item]:
        """
        List items ordered by name then SKU.

        ``search`` matches name or SKU case-insensitively.  ``low_stock_only``
        keeps items with a reorder point and stock at or below it.
        """
        filters = filters or ItemFilter()
        stmt = select(ItemModel).where(ItemModel.organization_id == organization_id)

        if filters.item_type is not None:
            stmt = stmt.where(ItemModel.item_type == filters.item_type.value)
        if filters.status is not None:
            stmt = stmt.where(ItemModel.status == filters.status.value)
        if filters.category is not None:
            stmt = stmt.where(ItemModel.category == filters.category)
        if filters.search:
            pattern = f"%{filters.search.strip().lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(ItemModel.name).like(pattern),
                    func.lower(ItemModel.sku).like(pattern),
                )
            )
        if filters.low_stock_only:
            stmt = stmt.where(
                ItemModel.reorder_point.is_not(None),
                ItemModel.current_stock <= ItemModel.reorder_point,
            )

        stmt = stmt.order_by(ItemModel.name, ItemModel.sku)
        return [row.to_dto() for row in self.session.execute(stmt).scalars()]
