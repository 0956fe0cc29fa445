from typing import Dict, Any

from inventory.models import InventorySettings
from inventory.services.base_service import (
    BaseService, success_response, ValidationError
)


class InventorySettingsService(BaseService):
    model = InventorySettings

    BOOLEAN_FIELDS = {
        "allow_negative_stock",
        "low_stock_alert_enabled",
        "notify_telegram",
    }

    @classmethod
    def load(cls) -> InventorySettings:
        return InventorySettings.load()

    @classmethod
    def get_costing_method(cls) -> str:
        return cls.load().costing_method

    @classmethod
    def get_all(cls) -> Dict[str, Any]:
        settings = cls.load()

        return success_response({
            "settings": {
                "costing_method": settings.costing_method,
                "allow_negative_stock": settings.allow_negative_stock,
                "low_stock_alert_enabled": settings.low_stock_alert_enabled,
                "notify_telegram": settings.notify_telegram,
                "updated_at": settings.updated_at.isoformat(),
            },
            "costing_methods": [
                {"value": c[0], "label": c[1]}
                for c in InventorySettings.CostingMethod.choices
            ],
        })

    @classmethod
    def validate_costing_method(cls, method: str) -> str:
        valid_methods = [c[0] for c in InventorySettings.CostingMethod.choices]
        method = (method or "").upper()
        if method not in valid_methods:
            raise ValidationError(f"Invalid costing method. Valid: {valid_methods}", "costing_method")
        return method

    @classmethod
    def update(cls, **kwargs) -> Dict[str, Any]:
        settings = cls.load()

        updated = []
        if "costing_method" in kwargs:
            settings.costing_method = cls.validate_costing_method(kwargs["costing_method"])
            updated.append("costing_method")

        for field in cls.BOOLEAN_FIELDS:
            if field in kwargs:
                value = kwargs[field]
                if not isinstance(value, bool):
                    raise ValidationError(f"{field} must be true or false", field)
                setattr(settings, field, value)
                updated.append(field)

        if updated:
            settings.save()

        result = cls.get_all()
        result["updated_fields"] = updated
        result["message"] = f"Updated {len(updated)} setting(s)"
        return result
