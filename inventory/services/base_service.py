from typing import Dict, Any, Optional, List, Tuple
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from datetime import date, datetime
from django.db.models import Model
from django.utils import timezone
import uuid


class ServiceError(Exception):
    def __init__(self, message: str, code: str = "ERROR", details: Dict = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)


class ValidationError(ServiceError):
    def __init__(self, message: str, field: str = None, details: Dict = None):
        super().__init__(message, "VALIDATION_ERROR", details)
        self.field = field


class NotFoundError(ServiceError):
    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            f"{resource} not found: {identifier}",
            "NOT_FOUND",
            {"resource": resource, "identifier": str(identifier)}
        )


class BusinessRuleError(ServiceError):
    def __init__(self, message: str, rule: str = None):
        super().__init__(message, "BUSINESS_RULE_VIOLATION", {"rule": rule})


class OverReceiptError(ServiceError):
    def __init__(self, item_name: str, ordered: Decimal, received: Decimal, requested: Decimal):
        super().__init__(
            f"Cannot receive {requested} of {item_name}: "
            f"{received} of {ordered} already received",
            "OVER_RECEIPT",
            {
                "item": item_name,
                "ordered": str(ordered),
                "received": str(received),
                "requested": str(requested),
            }
        )


class InsufficientStockError(ServiceError):
    def __init__(self, item_name: str, required: Decimal, available: Decimal, stock_item_id: int = None):
        super().__init__(
            f"Insufficient stock for {item_name}: required {required}, available {available}",
            "INSUFFICIENT_STOCK",
            {
                "item": item_name,
                "stock_item_id": stock_item_id,
                "required": str(required),
                "available": str(available),
            }
        )


class ReversalMismatchError(ServiceError):
    def __init__(self, message: str, consumption_id: Any = None):
        super().__init__(message, "REVERSAL_MISMATCH", {"consumption_id": str(consumption_id)})


class ConsistencyError(ServiceError):
    """Counter and lot ledger disagree. Never corrected automatically."""

    def __init__(self, drifts: List[Dict[str, Any]]):
        names = ", ".join(d["name"] for d in drifts)
        super().__init__(
            f"Stock aggregate drift detected for {len(drifts)} item(s): {names}",
            "CONSISTENCY_ERROR",
            {"drifts": drifts}
        )
        self.drifts = drifts


def success_response(data: Any = None, message: str = "Success") -> Dict:
    response = {"success": True, "message": message}
    if data is not None:
        if isinstance(data, dict):
            response.update(data)
        else:
            response["data"] = data
    return response


def paginate_queryset(queryset, page: int = 1, per_page: int = 20) -> Tuple[List, Dict]:
    page = max(1, page)
    per_page = min(max(1, per_page), 100)

    total = queryset.count()
    total_pages = (total + per_page - 1) // per_page

    offset = (page - 1) * per_page
    items = list(queryset[offset:offset + per_page])

    return items, {
        "page": page,
        "per_page": per_page,
        "total_items": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1
    }


# Amount columns are DecimalField(max_digits=15, decimal_places=4)
MAX_AMOUNT = Decimal("1e11")


def to_decimal(value: Any, default: Decimal = Decimal("0"), field: str = None) -> Decimal:
    """Parse a number once at the service boundary. Floats go through str()."""
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError(f"Invalid number: {value!r}", field)
    if not result.is_finite():
        raise ValidationError(f"Invalid number: {value!r}", field)
    if abs(result) >= MAX_AMOUNT:
        raise ValidationError(f"Number out of range: {value!r}", field)
    return result


def round_decimal(value: Decimal, places: int = 4) -> Decimal:
    if value is None:
        return Decimal("0")
    quantize_str = "0." + "0" * places if places else "1"
    return value.quantize(Decimal(quantize_str), rounding=ROUND_HALF_UP)


def positive_quantity(value: Any, field: str = "quantity") -> Decimal:
    quantity = round_decimal(to_decimal(value, field=field))
    if quantity <= 0:
        raise ValidationError(f"{field.replace('_', ' ').capitalize()} must be positive", field)
    return quantity


def generate_number(prefix: str, model_class: Model, field: str = "order_number") -> str:
    today = timezone.now()
    date_part = today.strftime("%Y%m%d")
    filter_kwargs = {f"{field}__startswith": f"{prefix}-{date_part}"}
    last = model_class.objects.filter(**filter_kwargs).order_by(f"-{field}").first()

    if last:
        last_num = getattr(last, field)
        try:
            seq = int(last_num.split("-")[-1]) + 1
        except ValueError:
            seq = model_class.objects.filter(**filter_kwargs).count() + 1
    else:
        seq = 1

    return f"{prefix}-{date_part}-{seq:04d}"


def generate_reference(prefix: str) -> str:
    # Sequence-free: safe for rows written concurrently from many transactions
    return f"{prefix}-{timezone.now().strftime('%Y%m%d')}-{uuid.uuid4().hex[:10].upper()}"


def parse_date(value: Any, field: str = "date") -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"Invalid date: {value!r}", field)



class BaseService:
    model = None

    @classmethod
    def get_by_id(cls, id: int) -> Optional[Model]:
        try:
            return cls.model.objects.get(id=id)
        except (cls.model.DoesNotExist, ValueError, TypeError):
            return None
