from typing import Dict, Any
from django.db import transaction
from django.db.models import Q

from inventory.models import Supplier, PurchaseOrder
from inventory.services.base_service import (
    BaseService, success_response, paginate_queryset,
    ValidationError, NotFoundError, BusinessRuleError
)


class SupplierService(BaseService):
    model = Supplier

    EDITABLE_FIELDS = [
        "name", "contact_person", "email", "phone", "address",
        "tax_id", "payment_terms_days", "branch_id", "notes",
    ]

    @classmethod
    def serialize(cls, supplier: Supplier) -> Dict[str, Any]:
        return {
            "id": supplier.id,
            "uuid": str(supplier.uuid),
            "name": supplier.name,
            "contact_person": supplier.contact_person,
            "email": supplier.email,
            "phone": supplier.phone,
            "address": supplier.address,
            "tax_id": supplier.tax_id,
            "payment_terms_days": supplier.payment_terms_days,
            "branch_id": supplier.branch_id,
            "is_active": supplier.is_active,
            "notes": supplier.notes,
        }

    @classmethod
    def list(cls, page: int = 1, per_page: int = 20, search: str = None,
             branch_id: int = None, active_only: bool = True) -> Dict[str, Any]:
        queryset = cls.model.objects.all()

        if active_only:
            queryset = queryset.filter(is_active=True)
        if branch_id:
            queryset = queryset.filter(branch_id=branch_id)
        if search:
            queryset = queryset.filter(
                Q(name__icontains=search) |
                Q(contact_person__icontains=search) |
                Q(phone__icontains=search)
            )

        suppliers, pagination = paginate_queryset(queryset.order_by("name"), page, per_page)

        return success_response({
            "suppliers": [cls.serialize(s) for s in suppliers],
            "pagination": pagination,
        })

    @classmethod
    def get_active_supplier(cls, supplier_id: int) -> Supplier:
        try:
            return cls.model.objects.get(id=supplier_id, is_active=True)
        except (cls.model.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Supplier", supplier_id)

    @classmethod
    @transaction.atomic
    def create(cls, name: str, **kwargs) -> Dict[str, Any]:
        if not name or not name.strip():
            raise ValidationError("Name is required", "name")

        data = {k: v for k, v in kwargs.items() if k in cls.EDITABLE_FIELDS}
        supplier = cls.model.objects.create(name=name.strip(), **data)

        return success_response({
            "id": supplier.id,
            "supplier": cls.serialize(supplier)
        }, f"Supplier '{supplier.name}' created")

    @classmethod
    @transaction.atomic
    def update(cls, supplier_id: int, **kwargs) -> Dict[str, Any]:
        supplier = cls.get_by_id(supplier_id)
        if not supplier:
            raise NotFoundError("Supplier", supplier_id)

        update_fields = ["updated_at"]
        for field in cls.EDITABLE_FIELDS:
            if field in kwargs:
                setattr(supplier, field, kwargs[field])
                update_fields.append(field)

        supplier.save(update_fields=update_fields)

        return success_response({"supplier": cls.serialize(supplier)}, "Supplier updated")

    @classmethod
    @transaction.atomic
    def deactivate(cls, supplier_id: int) -> Dict[str, Any]:
        supplier = cls.get_by_id(supplier_id)
        if not supplier:
            raise NotFoundError("Supplier", supplier_id)

        open_orders = supplier.purchase_orders.exclude(
            status__in=[PurchaseOrder.Status.RECEIVED, PurchaseOrder.Status.CANCELLED]
        )
        if open_orders.exists():
            raise BusinessRuleError("Cannot deactivate supplier with open purchase orders")

        supplier.is_active = False
        supplier.save(update_fields=["is_active", "updated_at"])

        return success_response({"id": supplier_id}, "Supplier deactivated")
