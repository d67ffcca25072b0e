# backend/data_transfer.py
"""
Export, import and reset of the whole data set.

The document format is a single JSON object:

    {"tasks": [...], "projects": [...], "goals": [...], "reminders": [...],
     "calendarEvents": [...], "settings": [...], "exportDate": "<ISO-8601>"}

Record keys are camelCase (createdAt, dueDate, linkedItems, ...) and dates
are ISO-8601 strings. Import also accepts snake_case keys.

Import runs in one Store transaction: either every record lands or none do.
"""
import re
import json
from datetime import datetime, date
from typing import Dict, Any, List, Optional

from .database import Store, StoreTransaction, ENTITY_COLLECTIONS, column_names
from .errors import ImportFormatError, ValidationError
from .logging_setup import get_logger
from .repository import LIST_ORDERING, SETTINGS_ID, INBOX_PROJECT_ID
from .validation import parse_datetime, validate_payload

logger = get_logger('data_transfer')

# ============================================================================
# Abuse Prevention Limits
# ============================================================================
MAX_IMPORT_SIZE_MB = 50  # Maximum document size
MAX_RECORDS_PER_COLLECTION = 10000  # Maximum records per collection per import

EXPORT_KEYS = ENTITY_COLLECTIONS + ('settings',)
TIMESTAMP_COLUMNS = ('created_at', 'updated_at')

# Rows created by ensure_defaults(); an imported copy is merged into them
# instead of colliding on id.
MERGED_DEFAULT_IDS = {
    'projects': {INBOX_PROJECT_ID},
}

_CAMEL_BOUNDARY = re.compile(r'(?<!^)(?=[A-Z])')


def to_camel(key: str) -> str:
    head, *rest = key.split('_')
    return head + ''.join(part[:1].upper() + part[1:] for part in rest)


def to_snake(key: str) -> str:
    return _CAMEL_BOUNDARY.sub('_', key).lower()


def _convert_keys(value: Any, convert) -> Any:
    if isinstance(value, dict):
        return {convert(k): _convert_keys(v, convert) for k, v in value.items()}
    if isinstance(value, list):
        return [_convert_keys(item, convert) for item in value]
    return value


def _json_default(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


# ============================================================================
# Export
# ============================================================================

def export_document(store: Store, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Read every collection in one transaction and build the export mapping."""
    now = now or datetime.now()
    document: Dict[str, Any] = {}
    with store.transaction() as tx:
        for collection in EXPORT_KEYS:
            order_by, descending = LIST_ORDERING[collection]
            records = tx.list(collection, order_by, descending)
            document[collection] = [_convert_keys(record, to_camel) for record in records]
    document['exportDate'] = now.isoformat()
    return document


def export_data(store: Store, now: Optional[datetime] = None) -> str:
    """Serialize the whole data set to the JSON export format (indent 2)."""
    document = export_document(store, now)
    logger.info(
        "[DataTransfer] Exported "
        + ', '.join(f"{len(document[c])} {c}" for c in EXPORT_KEYS)
    )
    return json.dumps(document, indent=2, default=_json_default)


# ============================================================================
# Import
# ============================================================================

def _parse_document(text: str) -> Dict[str, Any]:
    if isinstance(text, bytes):
        text = text.decode('utf-8')
    if len(text.encode('utf-8')) > MAX_IMPORT_SIZE_MB * 1024 * 1024:
        raise ImportFormatError(f"Import document exceeds {MAX_IMPORT_SIZE_MB} MB")
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise ImportFormatError(f"Import document is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise ImportFormatError("Import document root must be a JSON object")
    return document


def _normalize_record(collection: str, raw: Any, index: int) -> Dict[str, Any]:
    """
    Convert one imported record to a snake_case store row.

    Everything except id and the timestamps goes through the same
    validate_payload() check the repository runs before a write, so an
    imported row satisfies the same field rules as one created in the app.
    """
    if not isinstance(raw, dict):
        raise ImportFormatError(f"{collection}[{index}] is not an object")
    record = {to_snake(k): _convert_keys(v, to_snake) for k, v in raw.items()}

    known = set(column_names(collection))
    ignored = sorted(set(record) - known)
    if ignored:
        logger.warning(f"[DataTransfer] Ignoring unknown field(s) in {collection}[{index}]: {ignored}")
        record = {k: v for k, v in record.items() if k in known}

    record_id = record.pop('id', None)
    if collection != 'settings' and not record_id:
        raise ImportFormatError(f"{collection}[{index}] has no id")

    timestamps = {}
    try:
        for name in TIMESTAMP_COLUMNS:
            value = parse_datetime(record.pop(name, None), name)
            if value is not None:
                timestamps[name] = value
        fields = validate_payload(collection, record, partial=(collection == 'settings'))
    except ValidationError as e:
        raise ImportFormatError(f"{collection}[{index}]: {e}") from e

    row = dict(fields, **timestamps)
    if record_id is not None:
        row['id'] = str(record_id)
    created_at = row.get('created_at')
    if created_at and (not row.get('updated_at') or row['updated_at'] < created_at):
        row['updated_at'] = created_at
    return row


def parse_import(text: str) -> Dict[str, List[Dict[str, Any]]]:
    """
    Validate an import document without touching the store.

    Returns:
        Mapping of collection -> normalized rows (collections absent from the
        document are omitted)

    Raises:
        ImportFormatError: On any structural problem
    """
    document = _parse_document(text)
    rows: Dict[str, List[Dict[str, Any]]] = {}
    for collection in EXPORT_KEYS:
        value = document.get(collection)
        if value is None:
            continue
        if collection == 'settings' and isinstance(value, dict):
            value = [value]
        if not isinstance(value, list):
            raise ImportFormatError(f"'{collection}' must be a list of records")
        if len(value) > MAX_RECORDS_PER_COLLECTION:
            raise ImportFormatError(
                f"'{collection}' has {len(value)} records (limit {MAX_RECORDS_PER_COLLECTION})"
            )
        rows[collection] = [_normalize_record(collection, raw, i) for i, raw in enumerate(value)]
    return rows


def import_data(store: Store, text: str) -> Dict[str, int]:
    """
    Import a JSON export document in one transaction.

    Existing ids are not de-duplicated: a collision raises StoreIOError and
    nothing is written. The settings singleton and the default Inbox project
    are merged into the existing rows.

    Returns:
        Count of imported records per collection
    """
    rows = parse_import(text)
    with store.transaction() as tx:
        counts = write_import(tx, rows)
    logger.info(f"[DataTransfer] Imported {counts}")
    return counts


def write_import(tx: StoreTransaction, rows: Dict[str, List[Dict[str, Any]]]) -> Dict[str, int]:
    """Write rows from parse_import() inside the caller's transaction."""
    counts: Dict[str, int] = {}
    for collection, records in rows.items():
        if collection == 'settings':
            for record in records:
                _merge_row(tx, 'settings', SETTINGS_ID, record)
            counts[collection] = len(records)
            continue
        merged_ids = MERGED_DEFAULT_IDS.get(collection, set())
        fresh = []
        for record in records:
            if record['id'] in merged_ids and tx.get(collection, record['id']) is not None:
                _merge_row(tx, collection, record['id'], record)
            else:
                fresh.append(record)
        tx.bulk_add(collection, fresh)
        counts[collection] = len(records)
    return counts


def clear_entities(tx: StoreTransaction) -> Dict[str, int]:
    return {collection: tx.clear(collection) for collection in ENTITY_COLLECTIONS}


def _merge_row(tx, collection: str, record_id: str, record: Dict[str, Any]):
    fields = {k: v for k, v in record.items() if k != 'id'}
    if tx.get(collection, record_id) is None:
        tx.add(collection, {**fields, 'id': record_id})
    else:
        tx.update(collection, record_id, fields)


# ============================================================================
# Reset
# ============================================================================

def reset_data(store: Store) -> Dict[str, int]:
    """Clear the five entity collections in one transaction. Settings survive."""
    with store.transaction() as tx:
        removed = clear_entities(tx)
    logger.info(f"[DataTransfer] Reset data: {removed}")
    return removed
