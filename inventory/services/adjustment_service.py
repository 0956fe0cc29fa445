import logging
from typing import Dict, Any
from decimal import Decimal
from django.db import transaction

from inventory.models import CostLot, ConsumptionRecord
from inventory.services.base_service import (
    BaseService, success_response,
    ValidationError, NotFoundError,
    to_decimal, round_decimal
)
from inventory.services.consumption_service import ConsumptionService
from inventory.services.level_service import StockLevelService
from inventory.services.lot_service import CostLotService

logger = logging.getLogger(__name__)


class StockAdjustmentService(BaseService):
    """
    Manual corrections after a count. Gains become ADJUSTMENT lots,
    losses become consumption records so they stay reversible.
    """

    model = CostLot

    @classmethod
    @transaction.atomic
    def adjust(cls,
               stock_item_id: int,
               quantity: Decimal,
               unit_cost: Decimal = None,
               wastage: bool = False,
               adjusted_by: str = "",
               notes: str = "") -> Dict[str, Any]:

        quantity = round_decimal(to_decimal(quantity, field="quantity"))
        if quantity == 0:
            raise ValidationError("Adjustment quantity cannot be zero", "quantity")

        stock_item = StockLevelService.lock_item(stock_item_id)
        if not stock_item.is_active:
            raise NotFoundError("Stock item", stock_item_id)

        if quantity > 0:
            if unit_cost is None or unit_cost == "":
                unit_cost = CostLotService.get_average_cost(stock_item)
            lot = CostLotService.create_lot(
                stock_item_id=stock_item.id,
                quantity=quantity,
                unit_cost=unit_cost,
                source=CostLot.Source.ADJUSTMENT,
                notes=notes or f"Adjustment by {adjusted_by}".strip(),
            )
            logger.info(f"Stock of {stock_item.name} adjusted by +{quantity}")
            return success_response({
                "direction": "in",
                "lot": CostLotService.serialize(lot),
            }, f"Added {quantity} to {stock_item.name}")

        order_type = ConsumptionRecord.OrderType.WASTAGE if wastage else ConsumptionRecord.OrderType.MANUAL
        result = ConsumptionService.record_manual_consumption(
            stock_item_id=stock_item.id,
            quantity=-quantity,
            order_type=order_type,
            consumed_by=adjusted_by,
            notes=notes,
        )
        logger.info(f"Stock of {stock_item.name} adjusted by {quantity}")
        return success_response({
            "direction": "out",
            "record": result["record"],
        }, f"Removed {-quantity} from {stock_item.name}")
