"""
Import schemas for each catalog entity type.

One fixed table per type: target field, accepted column aliases (tried in
order), type, required flag, ranges and parent references. The Schema
Mapper, the Validator and the Commit Engine all read from here.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from models.import_session import EntityType


class FieldType(str, Enum):
    """Declared type of an import field."""
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ENUM = "enum"
    ENUM_LIST = "enum_list"


@dataclass(frozen=True)
class ReferenceSpec:
    """Field that names a parent entity by its name."""
    target_type: EntityType
    column: str  # FK column on the catalog table
    self_reference: bool = False  # may point at sibling rows of the same batch


@dataclass(frozen=True)
class FieldSpec:
    """One target field of an entity schema."""
    name: str
    aliases: tuple[str, ...]
    type: FieldType = FieldType.STRING
    required: bool = False
    default: Any = None
    enum_values: tuple[str, ...] = ()
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    recommended_max: Optional[float] = None
    recommended_max_setting: Optional[str] = None  # Settings attribute overriding recommended_max
    max_length: int = 255
    reference: Optional[ReferenceSpec] = None

    @property
    def column(self) -> str:
        """Catalog column this field is written to."""
        return self.reference.column if self.reference else self.name


@dataclass(frozen=True)
class EntitySchema:
    """Import schema of one entity type."""
    entity_type: EntityType
    table: str
    fields: tuple[FieldSpec, ...]
    natural_key: tuple[str, ...]
    member_names: tuple[str, ...]  # archive member stems for this type
    _by_name: dict = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self):
        self._by_name.update({f.name: f for f in self.fields})

    def get_field(self, name: str) -> Optional[FieldSpec]:
        return self._by_name.get(name)

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    @property
    def reference_fields(self) -> list[FieldSpec]:
        return [f for f in self.fields if f.reference is not None]

    @property
    def parent_field(self) -> Optional[FieldSpec]:
        """Reference field that is part of the natural key, if any."""
        for name in self.natural_key:
            field_spec = self._by_name[name]
            if field_spec.reference is not None:
                return field_spec
        return None

    @property
    def key_field(self) -> FieldSpec:
        """Natural-key field holding the entity's own name or code."""
        for name in self.natural_key:
            field_spec = self._by_name[name]
            if field_spec.reference is None:
                return field_spec
        raise ValueError(f"{self.entity_type.value} natural key has no own field")

    @property
    def natural_key_columns(self) -> tuple[str, ...]:
        return tuple(self._by_name[name].column for name in self.natural_key)


def _active() -> FieldSpec:
    return FieldSpec(
        "is_active", ("is_active", "active", "enabled"),
        type=FieldType.BOOLEAN, default=True,
    )


def _sort_order(name: str = "sort_order") -> FieldSpec:
    return FieldSpec(
        name, (name, "sort_order", "display_order", "position", "order"),
        type=FieldType.INTEGER, default=0, min_value=0,
    )


CATEGORY_SCHEMA = EntitySchema(
    entity_type=EntityType.CATEGORY,
    table="categories",
    fields=(
        FieldSpec("name", ("name", "category_name", "category", "title"), required=True),
        FieldSpec(
            "parent", ("parent", "parent_name", "parent_category", "parent_category_name"),
            reference=ReferenceSpec(EntityType.CATEGORY, "parent_id", self_reference=True),
        ),
        FieldSpec("description", ("description", "desc", "details"), max_length=1000),
        _sort_order(),
        _active(),
    ),
    natural_key=("name",),
    member_names=("categories", "category", "menu_categories"),
)

ITEM_SCHEMA = EntitySchema(
    entity_type=EntityType.ITEM,
    table="items",
    fields=(
        FieldSpec("name", ("name", "item_name", "title"), required=True),
        FieldSpec(
            "category", ("category", "category_name", "category_key"),
            required=True,
            reference=ReferenceSpec(EntityType.CATEGORY, "category_id"),
        ),
        FieldSpec("description", ("description", "desc", "details"), max_length=1000),
        FieldSpec(
            "base_price", ("base_price", "price", "unit_price"),
            type=FieldType.NUMBER, required=True, min_value=0,
            recommended_max_setting="import_price_warning_threshold",
        ),
        FieldSpec("is_sizeable", ("is_sizeable", "sizeable", "has_sizes"), type=FieldType.BOOLEAN, default=False),
        FieldSpec("is_customizable", ("is_customizable", "customizable"), type=FieldType.BOOLEAN, default=False),
        FieldSpec("is_available", ("is_available", "available", "in_stock"), type=FieldType.BOOLEAN, default=True),
        FieldSpec("is_signature", ("is_signature", "signature"), type=FieldType.BOOLEAN, default=False),
        _active(),
        FieldSpec(
            "max_per_order", ("max_per_order", "order_limit"),
            type=FieldType.INTEGER, min_value=1, recommended_max=50,
        ),
        _sort_order(),
    ),
    natural_key=("category", "name"),
    member_names=("items", "item", "menu_items", "products"),
)

MODIFIER_GROUP_SCHEMA = EntitySchema(
    entity_type=EntityType.MODIFIER_GROUP,
    table="modifier_groups",
    fields=(
        FieldSpec("name", ("name", "group_name", "modifier_group", "title"), required=True),
        FieldSpec(
            "display_type", ("display_type", "type", "selection_type"),
            type=FieldType.ENUM, default="RADIO", enum_values=("RADIO", "CHECKBOX"),
        ),
        FieldSpec("min_select", ("min_select", "min", "minimum"), type=FieldType.INTEGER, default=0, min_value=0),
        FieldSpec(
            "max_select", ("max_select", "max", "maximum"),
            type=FieldType.INTEGER, default=1, min_value=1, recommended_max=20,
        ),
        FieldSpec(
            "applies_per_quantity", ("applies_per_quantity", "per_quantity"),
            type=FieldType.BOOLEAN, default=False,
        ),
        _active(),
        _sort_order(),
    ),
    natural_key=("name",),
    member_names=("modifier_groups", "modifier_group", "groups"),
)

MODIFIER_SCHEMA = EntitySchema(
    entity_type=EntityType.MODIFIER,
    table="modifiers",
    fields=(
        FieldSpec("name", ("name", "modifier_name", "title"), required=True),
        FieldSpec(
            "group", ("group", "group_name", "modifier_group", "group_key"),
            required=True,
            reference=ReferenceSpec(EntityType.MODIFIER_GROUP, "modifier_group_id"),
        ),
        FieldSpec("is_default", ("is_default", "default"), type=FieldType.BOOLEAN, default=False),
        FieldSpec(
            "max_quantity", ("max_quantity", "max_qty"),
            type=FieldType.INTEGER, min_value=1, recommended_max=10,
        ),
        _sort_order("display_order"),
        FieldSpec(
            "allowed_sides", ("allowed_sides", "sides", "side_placement"),
            type=FieldType.ENUM_LIST, default=(), enum_values=("LEFT", "RIGHT", "WHOLE"),
        ),
        _active(),
    ),
    natural_key=("group", "name"),
    member_names=("modifiers", "modifier", "modifier_options", "options"),
)

SIZE_SCHEMA = EntitySchema(
    entity_type=EntityType.SIZE,
    table="item_sizes",
    fields=(
        FieldSpec("code", ("code", "size_code", "size"), required=True, max_length=20),
        FieldSpec("name", ("name", "size_name", "label"), required=True),
        FieldSpec(
            "item", ("item", "item_name", "item_key"),
            required=True,
            reference=ReferenceSpec(EntityType.ITEM, "item_id"),
        ),
        FieldSpec(
            "price", ("price", "size_price"),
            type=FieldType.NUMBER, required=True, min_value=0,
            recommended_max_setting="import_price_warning_threshold",
        ),
        _sort_order("display_order"),
        FieldSpec("is_default", ("is_default", "default"), type=FieldType.BOOLEAN, default=False),
        _active(),
    ),
    natural_key=("item", "code"),
    member_names=("item_sizes", "item_size", "sizes", "size"),
)

SCHEMAS: dict[EntityType, EntitySchema] = {
    schema.entity_type: schema
    for schema in (
        CATEGORY_SCHEMA,
        ITEM_SCHEMA,
        MODIFIER_GROUP_SCHEMA,
        MODIFIER_SCHEMA,
        SIZE_SCHEMA,
    )
}


def get_schema(entity_type: EntityType) -> EntitySchema:
    """Get the import schema for an entity type."""
    return SCHEMAS[EntityType(entity_type)]
