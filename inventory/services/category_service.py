from typing import Dict, Any
from django.db import transaction

from inventory.models import StockCategory
from inventory.services.base_service import (
    BaseService, success_response,
    ValidationError, NotFoundError, BusinessRuleError
)


class StockCategoryService(BaseService):
    model = StockCategory

    @classmethod
    def serialize(cls, category: StockCategory) -> Dict[str, Any]:
        return {
            "id": category.id,
            "uuid": str(category.uuid),
            "name": category.name,
            "description": category.description,
            "branch_id": category.branch_id,
            "sort_order": category.sort_order,
            "is_active": category.is_active,
        }

    @classmethod
    def list(cls, branch_id: int = None, include_inactive: bool = False) -> Dict[str, Any]:
        queryset = cls.model.objects.all()
        if not include_inactive:
            queryset = queryset.filter(is_active=True)
        if branch_id:
            queryset = queryset.filter(branch_id=branch_id)

        return success_response({
            "categories": [cls.serialize(c) for c in queryset],
            "count": queryset.count(),
        })

    @classmethod
    @transaction.atomic
    def create(cls, name: str, description: str = "", branch_id: int = None,
               sort_order: int = 0) -> Dict[str, Any]:
        if not name or not name.strip():
            raise ValidationError("Name is required", "name")

        if cls.model.objects.filter(name__iexact=name.strip(), branch_id=branch_id, is_active=True).exists():
            raise ValidationError(f"Category '{name}' already exists", "name")

        category = cls.model.objects.create(
            name=name.strip(),
            description=description,
            branch_id=branch_id,
            sort_order=sort_order,
        )

        return success_response({
            "id": category.id,
            "category": cls.serialize(category)
        }, f"Category '{category.name}' created")

    @classmethod
    @transaction.atomic
    def update(cls, category_id: int, **kwargs) -> Dict[str, Any]:
        category = cls.get_by_id(category_id)
        if not category:
            raise NotFoundError("Category", category_id)

        update_fields = ["updated_at"]
        for field in ["name", "description", "branch_id", "sort_order"]:
            if field in kwargs:
                setattr(category, field, kwargs[field])
                update_fields.append(field)

        category.save(update_fields=update_fields)

        return success_response({"category": cls.serialize(category)}, "Category updated")

    @classmethod
    @transaction.atomic
    def deactivate(cls, category_id: int) -> Dict[str, Any]:
        category = cls.get_by_id(category_id)
        if not category:
            raise NotFoundError("Category", category_id)

        if category.items.filter(is_active=True).exists():
            raise BusinessRuleError("Cannot deactivate category with active stock items")

        category.is_active = False
        category.save(update_fields=["is_active", "updated_at"])

        return success_response({"id": category_id}, "Category deactivated")
