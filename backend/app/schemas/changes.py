"""Change analysis report schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

_ITEM_KEY_ALIASES: dict[str, tuple[str, ...]] = {
    "field": ("fieldName", "field_name", "name", "path"),
    "previous": ("oldValue", "old_value", "previousValue", "previous_value", "old", "before", "existing"),
    "current": ("newValue", "new_value", "currentValue", "current_value", "new", "after", "extracted"),
    "note": ("description", "reason", "details", "comment", "explanation"),
}


class ChangeItem(BaseModel):
    """One categorized difference between the known snapshot and new data."""

    model_config = ConfigDict(extra="ignore")

    field: str = ""
    previous: Any = None
    current: Any = None
    note: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _map_model_key_variants(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        item = dict(value)
        for target, aliases in _ITEM_KEY_ALIASES.items():
            if item.get(target) is not None:
                continue
            for alias in aliases:
                if item.get(alias) is not None:
                    item[target] = item[alias]
                    break
        if item.get("field") is None:
            item["field"] = ""
        return item


class ChangeReport(BaseModel):
    """Categorized differences emitted downstream after an order changes."""

    critical: list[ChangeItem] = Field(default_factory=list)
    minor: list[ChangeItem] = Field(default_factory=list)
    new_information: list[ChangeItem] = Field(default_factory=list)
    conflicts: list[ChangeItem] = Field(default_factory=list)
    error: str | None = None
    details: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def change_count(self) -> int:
        return len(self.critical) + len(self.minor) + len(self.new_information) + len(self.conflicts)
