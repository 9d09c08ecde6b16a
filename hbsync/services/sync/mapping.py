"""
Entity Mapper
Flattens Procore JSON records into local table rows

- map_record() is pure: nested fields are read by dotted path, values are
  coerced leniently, and missing optional fields become None
- A record without its natural key (or that is not an object) maps to None
- map_records() skips those with one warning each; it never raises on data
"""
import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)

Path = Union[str, Tuple[str, ...]]


# ============================================================================
# COERCION
# ============================================================================

def dig(record: Any, path: str) -> Any:
    """Read a dotted path ("vendor.name") through nested objects; None when absent."""
    value = record
    for part in path.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value


def _first(record: Mapping[str, Any], paths: Path) -> Any:
    for path in (paths,) if isinstance(paths, str) else paths:
        value = dig(record, path)
        if value is not None:
            return value
    return None


def to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    return int(number) if number.is_integer() else None


def to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(str(value).replace(",", "").strip())
    except ValueError:
        return None


def to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1", "y"):
            return True
        if lowered in ("false", "no", "0", "n", ""):
            return False
    return None


def to_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (Mapping, list)):
        return None
    text = str(value).strip()
    return text or None


def to_date(value: Any) -> Optional[str]:
    """ISO date (YYYY-MM-DD) from a date, datetime or ISO string."""
    if isinstance(value, (date, datetime)):
        return value.isoformat()[:10]
    text = to_str(value)
    if text is None:
        return None
    try:
        return date.fromisoformat(text[:10]).isoformat()
    except ValueError:
        return None


def _default(coerce: Callable[[Any], Any], fallback: Any) -> Callable[[Any], Any]:
    def coerce_or_default(value: Any) -> Any:
        result = coerce(value)
        return fallback if result is None else result
    return coerce_or_default


# ============================================================================
# FIELD MAPS
# ============================================================================

class KindMapping:
    """
    Natural-key column plus {column: (source path(s), coercer)} for one resource kind.

    `required` lists the columns (natural key first) a row cannot be stored without.
    """

    def __init__(
        self,
        kind: str,
        key_column: str,
        fields: Dict[str, Tuple[Path, Callable[[Any], Any]]],
        required: Tuple[str, ...] = (),
    ):
        self.kind = kind
        self.key_column = key_column
        self.fields = fields
        self.required = (key_column,) + tuple(c for c in required if c != key_column)

    def missing(self, entity: Mapping[str, Any]) -> List[str]:
        return [column for column in self.required if entity.get(column) is None]

    def apply(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        return {column: coerce(_first(record, paths)) for column, (paths, coerce) in self.fields.items()}


MAPPINGS: Dict[str, KindMapping] = {
    m.kind: m
    for m in (
        KindMapping("users", "id", {
            "id": ("id", to_int),
            "email": (("email_address", "email"), to_str),
            "first_name": ("first_name", to_str),
            "last_name": ("last_name", to_str),
            "job_title": ("job_title", to_str),
            "phone": (("business_phone", "mobile_phone"), to_str),
            "is_employee": ("is_employee", _default(to_bool, False)),
            "is_active": ("is_active", _default(to_bool, True)),
        }),
        KindMapping("projects", "project_id", {
            "project_id": ("id", to_int),
            "name": (("name", "display_name"), to_str),
            "number": (("project_number", "number"), to_str),
            "company_id": ("company.id", to_int),
            "street_address": (("address", "street_address"), to_str),
            "city": ("city", to_str),
            "state": (("state_code", "state"), to_str),
            "zip": ("zip", to_str),
            "active": ("active", _default(to_bool, True)),
            "start_date": ("start_date", to_date),
            "original_completion_date": ("completion_date", to_date),
            "approved_completion_date": ("projected_finish_date", to_date),
            "contract_value": (("total_value", "estimated_value"), to_float),
        }, required=("name",)),
        KindMapping("cost_codes", "id", {
            "id": ("id", to_int),
            "code": ("code", to_str),
            "full_code": (("full_code", "code"), to_str),
            "name": ("name", to_str),
            "budgeted": ("budgeted", _default(to_bool, False)),
        }),
        KindMapping("commitments", "id", {
            "id": ("id", to_int),
            "number": ("number", to_str),
            "title": ("title", to_str),
            "vendor": (("vendor.name", "vendor.company"), to_str),
            "status": ("status", to_str),
            "contract_type": (("contract_type", "type"), to_str),
            "executed": ("executed", _default(to_bool, False)),
            "original_contract_amount": (("original_contract_amount", "grand_total"), to_float),
            "approved_change_orders": (("approved_change_orders", "approved_change_orders_amount"), to_float),
        }),
        KindMapping("budgets", "id", {
            "id": ("id", to_int),
            "cost_code_id": (("cost_code.id", "cost_code_id"), to_int),
            "description": (("description", "cost_code.name", "wbs_code.description"), to_str),
            "original_budget_amount": (("original_budget_amount", "amount"), to_float),
            "revised_budget_amount": ("revised_budget_amount", to_float),
            "committed_costs": ("committed_costs", to_float),
            "projected_costs": ("projected_costs", to_float),
        }),
        KindMapping("change_events", "id", {
            "id": ("id", to_int),
            "number": ("number", to_str),
            "title": ("title", to_str),
            "status": (("status", "change_event_status.name"), to_str),
            "event_scope": ("event_scope", to_str),
            "event_type": (("event_type", "change_event_type.name"), to_str),
            "change_reason": (("change_reason", "change_event_change_reason.name"), to_str),
            "description": ("description", to_str),
            "remote_created_at": ("created_at", to_str),
            "remote_updated_at": ("updated_at", to_str),
        }),
    )
}


# ============================================================================
# PUBLIC API
# ============================================================================

def _mapping_for(kind: str) -> KindMapping:
    try:
        return MAPPINGS[kind]
    except KeyError:
        raise ValueError(f"No mapping for resource kind: {kind}")


def map_record(record: Any, kind: str) -> Optional[Dict[str, Any]]:
    """
    Map one external record to a table row.

    Returns:
        Row dict, or None when the record is not an object or lacks a required column
    """
    mapping = _mapping_for(kind)
    if not isinstance(record, Mapping):
        return None
    entity = mapping.apply(record)
    if mapping.missing(entity):
        return None
    return entity


def map_records(
    records: Iterable[Any],
    kind: str,
    context: Optional[Mapping[str, Any]] = None,
) -> List[Dict[str, Any]]:
    """
    Map a batch, dropping unmappable records with a warning each.

    Args:
        records: External records
        kind: Resource kind name
        context: Parent keys merged into every row (e.g. {"project_id": 42})

    Returns:
        Only the successfully mapped rows
    """
    mapping = _mapping_for(kind)
    mapped: List[Dict[str, Any]] = []
    for index, record in enumerate(records):
        entity = map_record(record, kind)
        if entity is None:
            missing = mapping.missing(mapping.apply(record)) if isinstance(record, Mapping) else ["record"]
            logger.warning(f"⚠️  Skipping {kind} record #{index}: missing required field(s) {', '.join(missing)}")
            continue
        if context:
            entity.update(context)
        mapped.append(entity)
    return mapped
