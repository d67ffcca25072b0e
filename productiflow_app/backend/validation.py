# backend/validation.py
"""
Input validation for entity payloads.

Every Repository write runs its payload through one of the validate_*
functions below before the Store is touched. Full payloads (create) get
defaults filled in; partial payloads (update) are checked field by field.
"""
import uuid
from datetime import datetime, date, time
from typing import Optional, Dict, Any, List, Callable

from .errors import ValidationError


# ============================================================================
# Input Length Limits
# ============================================================================

MAX_TITLE_LENGTH = 200
MAX_EVENT_TITLE_LENGTH = 256  # Room for derived-event prefixes
MAX_DESCRIPTION_LENGTH = 5000
MAX_TAG_LENGTH = 100
MAX_LOCATION_LENGTH = 500

PRIORITIES = ('P1', 'P2', 'P3', 'P4')
DEFAULT_PRIORITY = 'P3'
RECURRENCE_TYPES = ('daily', 'weekly', 'monthly', 'yearly', 'custom')
LINK_KINDS = ('tasks', 'goals', 'reminders', 'events')
THEMES = ('light', 'dark', 'system')
TIME_FORMATS = ('12h', '24h')

IMMUTABLE_FIELDS = ('id', 'created_at')

DEFAULT_NOTIFICATIONS = {
    'enabled': True,
    'task_reminders': True,
    'goal_milestones': True,
    'daily_digest': False,
}
DEFAULT_PRIVACY = {
    'pin_lock': False,
    'pin_code': None,
    'biometric': False,
}


# ============================================================================
# Field validators
# ============================================================================

def validate_title(title: Optional[str], field_name: str = 'title', max_length: int = MAX_TITLE_LENGTH) -> str:
    """
    Validate a required title/name.

    Raises:
        ValidationError: If the title is missing, blank or too long
    """
    if title is None or not isinstance(title, str) or not title.strip():
        raise ValidationError(f"{field_name} is required")
    title = title.strip()
    if len(title) > max_length:
        raise ValidationError(f"{field_name} too long (max {max_length} characters)")
    return title


def validate_description(description: Optional[str]) -> Optional[str]:
    if description is None:
        return None
    if not isinstance(description, str):
        raise ValidationError("description must be a string")
    description = description.strip()
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(f"description too long (max {MAX_DESCRIPTION_LENGTH} characters)")
    return description


def validate_optional_text(value: Optional[str], field_name: str, max_length: int = MAX_TITLE_LENGTH) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{field_name} too long (max {max_length} characters)")
    return value or None


def validate_priority(priority: Optional[str]) -> str:
    if priority is None:
        return DEFAULT_PRIORITY
    if priority not in PRIORITIES:
        raise ValidationError(f"priority must be one of {', '.join(PRIORITIES)}, got {priority!r}")
    return priority


def validate_tags(tags: Optional[List[str]]) -> List[str]:
    """Return tags with duplicates removed (case-sensitive), keeping first occurrence order."""
    if tags is None:
        return []
    if not isinstance(tags, (list, tuple)):
        raise ValidationError("tags must be a list of strings")
    seen = set()
    result = []
    for tag in tags:
        if not isinstance(tag, str):
            raise ValidationError("tags must be a list of strings")
        tag = tag.strip()
        if not tag:
            continue
        if len(tag) > MAX_TAG_LENGTH:
            raise ValidationError(f"tag too long (max {MAX_TAG_LENGTH} characters)")
        if tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result


def parse_datetime(value: Any, field_name: str = 'date') -> Optional[datetime]:
    """
    Coerce a datetime, date or ISO-8601 string into a naive local datetime.

    Offsets (including a trailing 'Z') are converted to local time and dropped.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, date):
        return datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            result = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"{field_name} is not a valid ISO-8601 date: {value!r}") from None
    else:
        raise ValidationError(f"{field_name} must be a date, datetime or ISO-8601 string")
    if result.tzinfo is not None:
        result = result.astimezone().replace(tzinfo=None)
    return result


def validate_number(value: Any, field_name: str, minimum: Optional[float] = 0, allow_none: bool = True) -> Optional[float]:
    if value is None:
        if allow_none:
            return None
        raise ValidationError(f"{field_name} is required")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field_name} must be a number")
    if minimum is not None and value < minimum:
        raise ValidationError(f"{field_name} must be >= {minimum}, got {value}")
    return float(value)


def validate_bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{field_name} must be true or false")
    return value


def validate_linked_items(linked: Optional[Dict[str, List[str]]]) -> Dict[str, List[str]]:
    if linked is None:
        return {kind: [] for kind in LINK_KINDS}
    if not isinstance(linked, dict):
        raise ValidationError("linked_items must be a mapping")
    unknown = set(linked) - set(LINK_KINDS)
    if unknown:
        raise ValidationError(f"linked_items has unknown kind(s): {', '.join(sorted(unknown))}")
    result = {}
    for kind in LINK_KINDS:
        ids = linked.get(kind) or []
        if not isinstance(ids, (list, tuple)) or not all(isinstance(i, str) for i in ids):
            raise ValidationError(f"linked_items.{kind} must be a list of ids")
        result[kind] = list(dict.fromkeys(ids))
    return result


def validate_recurrence(recurrence: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if recurrence is None:
        return None
    if not isinstance(recurrence, dict):
        raise ValidationError("recurrence must be a mapping")
    rtype = recurrence.get('type')
    if rtype not in RECURRENCE_TYPES:
        raise ValidationError(f"recurrence.type must be one of {', '.join(RECURRENCE_TYPES)}")
    interval = recurrence.get('interval', 1)
    if isinstance(interval, bool) or not isinstance(interval, int) or interval < 1:
        raise ValidationError("recurrence.interval must be an integer >= 1")
    result: Dict[str, Any] = {'type': rtype, 'interval': interval}
    days = recurrence.get('days_of_week')
    if days is not None:
        if not isinstance(days, (list, tuple)) or not all(
            isinstance(d, int) and not isinstance(d, bool) and 0 <= d <= 6 for d in days
        ):
            raise ValidationError("recurrence.days_of_week must be a list of weekday numbers 0-6")
        result['days_of_week'] = sorted(set(days))
    end_date = parse_datetime(recurrence.get('end_date'), 'recurrence.end_date')
    if end_date is not None:
        result['end_date'] = end_date.isoformat()
    return result


def validate_subtasks(subtasks: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    if subtasks is None:
        return []
    if not isinstance(subtasks, (list, tuple)):
        raise ValidationError("subtasks must be a list")
    result = []
    for item in subtasks:
        if not isinstance(item, dict):
            raise ValidationError("each subtask must be a mapping")
        result.append({
            'id': item.get('id') or str(uuid.uuid4()),
            'title': validate_title(item.get('title'), 'subtask title'),
            'completed': validate_bool(item.get('completed', False), 'subtask completed'),
        })
    return result


def validate_milestones(milestones: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    if milestones is None:
        return []
    if not isinstance(milestones, (list, tuple)):
        raise ValidationError("milestones must be a list")
    result = []
    for item in milestones:
        if not isinstance(item, dict):
            raise ValidationError("each milestone must be a mapping")
        completed_at = parse_datetime(item.get('completed_at'), 'milestone completed_at')
        result.append({
            'id': item.get('id') or str(uuid.uuid4()),
            'title': validate_title(item.get('title'), 'milestone title'),
            'target_value': validate_number(item.get('target_value'), 'milestone target_value', allow_none=False),
            'completed': validate_bool(item.get('completed', False), 'milestone completed'),
            'completed_at': completed_at.isoformat() if completed_at else None,
        })
    return result


# ============================================================================
# Entity payload validators
# ============================================================================

def _required_datetime(value: Any, field_name: str) -> datetime:
    parsed = parse_datetime(value, field_name)
    if parsed is None:
        raise ValidationError(f"{field_name} is required")
    return parsed


def _text(max_length: int) -> Callable:
    return lambda value, name: validate_optional_text(value, name, max_length)


def _color(value, name):
    color = validate_optional_text(value, name, 32)
    if color is None:
        raise ValidationError(f"{name} is required")
    return color


def _title(value, name):
    return validate_title(value, name)


def _description(value, name):
    return validate_description(value)


def _priority(value, name):
    return validate_priority(value)


def _tags(value, name):
    return validate_tags(value)


def _flag(value, name):
    return validate_bool(value, name)


def _optional_date(value, name):
    return parse_datetime(value, name)


def _recurrence(value, name):
    return validate_recurrence(value)


def _links(value, name):
    return validate_linked_items(value)


def _non_negative(value, name):
    return validate_number(value, name, minimum=0)


def _required_non_negative(value, name):
    return validate_number(value, name, minimum=0, allow_none=False)


def _streak(value, name):
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be an integer >= 0")
    return value


def _one_of(choices):
    def check(value, name):
        if value not in choices:
            raise ValidationError(f"{name} must be one of {', '.join(map(str, choices))}")
        return value
    return check


def _mapping(value, name):
    if not isinstance(value, dict):
        raise ValidationError(f"{name} must be a mapping")
    return dict(value)


def _weekday(value, name):
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 6:
        raise ValidationError(f"{name} must be a weekday number 0-6")
    return value


# field -> (validator, default). A default of _REQUIRED means the field must be given on create.
_REQUIRED = object()

ENTITY_FIELDS: Dict[str, Dict[str, tuple]] = {
    'tasks': {
        'title': (_title, _REQUIRED),
        'description': (_description, None),
        'completed': (_flag, False),
        'priority': (_priority, DEFAULT_PRIORITY),
        'due_date': (_optional_date, None),
        'start_date': (_optional_date, None),
        'project': (_text(64), None),
        'tags': (_tags, []),
        'location': (_text(MAX_LOCATION_LENGTH), None),
        'recurrence': (_recurrence, None),
        'subtasks': (lambda v, n: validate_subtasks(v), []),
        'linked_items': (_links, None),
    },
    'projects': {
        'name': (lambda v, n: validate_title(v, 'name'), _REQUIRED),
        'color': (_color, '#6b7280'),
        'description': (_description, None),
    },
    'goals': {
        'title': (_title, _REQUIRED),
        'description': (_description, None),
        'category': (lambda v, n: validate_title(v, 'category'), _REQUIRED),
        'target_value': (_non_negative, None),
        'current_value': (_required_non_negative, 0.0),
        'unit': (_text(50), None),
        'deadline': (_optional_date, None),
        'start_date': (_optional_date, None),
        'priority': (_priority, DEFAULT_PRIORITY),
        'tags': (_tags, []),
        'location': (_text(MAX_LOCATION_LENGTH), None),
        'is_habit': (_flag, False),
        'streak_count': (_streak, 0),
        'last_completed_date': (_optional_date, None),
        'recurrence': (_recurrence, None),
        'milestones': (lambda v, n: validate_milestones(v), []),
        'linked_items': (_links, None),
    },
    'reminders': {
        'title': (_title, _REQUIRED),
        'description': (_description, None),
        'due_date': (_required_datetime, _REQUIRED),
        'end_date': (_optional_date, None),
        'completed': (_flag, False),
        'priority': (_priority, DEFAULT_PRIORITY),
        'tags': (_tags, []),
        'location': (_text(MAX_LOCATION_LENGTH), None),
        'recurrence': (_recurrence, None),
        'linked_items': (_links, None),
    },
    'calendarEvents': {
        'title': (lambda v, n: validate_title(v, n, MAX_EVENT_TITLE_LENGTH), _REQUIRED),
        'description': (_description, None),
        'start_date': (_required_datetime, _REQUIRED),
        'end_date': (_required_datetime, _REQUIRED),
        'is_all_day': (_flag, False),
        'color': (_color, '#3b82f6'),
        'priority': (_priority, DEFAULT_PRIORITY),
        'tags': (_tags, []),
        'location': (_text(MAX_LOCATION_LENGTH), None),
        'recurrence': (_recurrence, None),
        'linked_items': (_links, None),
    },
    'settings': {
        'theme': (_one_of(THEMES), 'system'),
        'language': (_text(16), 'en'),
        'date_format': (_text(32), 'MM/dd/yyyy'),
        'time_format': (_one_of(TIME_FORMATS), '12h'),
        'first_day_of_week': (_weekday, 0),
        'notifications': (_mapping, DEFAULT_NOTIFICATIONS),
        'privacy': (_mapping, DEFAULT_PRIVACY),
    },
}


def _check_date_order(payload: Dict[str, Any], start_key: str, end_key: str):
    start, end = payload.get(start_key), payload.get(end_key)
    if start is not None and end is not None and end < start:
        raise ValidationError(f"{end_key} must not be before {start_key}")


DATE_ORDER_RULES = {
    'tasks': ('start_date', 'due_date'),
    'reminders': ('due_date', 'end_date'),
    'calendarEvents': ('start_date', 'end_date'),
    'goals': ('start_date', 'deadline'),
}


def validate_payload(collection: str, data: Dict[str, Any], partial: bool = False,
                     current: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Validate an entity payload for create (partial=False) or update (partial=True).

    Args:
        collection: Collection name ('tasks', 'goals', ...)
        data: Caller-supplied fields
        partial: True for updates; only supplied fields are checked
        current: Existing record, used to check date ordering on partial updates

    Returns:
        Cleaned payload (create payloads include defaults for omitted fields)

    Raises:
        ValidationError: On any malformed or unknown field
    """
    if not isinstance(data, dict):
        raise ValidationError("payload must be a mapping")
    fields = ENTITY_FIELDS[collection]

    blocked = [key for key in IMMUTABLE_FIELDS if key in data]
    if blocked:
        raise ValidationError(f"{', '.join(blocked)} cannot be set by callers")
    unknown = set(data) - set(fields) - {'updated_at'}
    if unknown:
        raise ValidationError(f"Unknown field(s) for {collection}: {', '.join(sorted(unknown))}")
    if 'updated_at' in data:
        raise ValidationError("updated_at is maintained by the repository")

    cleaned: Dict[str, Any] = {}
    for name, (validator, default) in fields.items():
        if name in data:
            cleaned[name] = validator(data[name], name)
        elif not partial:
            if default is _REQUIRED:
                raise ValidationError(f"{name} is required")
            cleaned[name] = validator(None, name) if default is None else _copy_default(default)

    rule = DATE_ORDER_RULES.get(collection)
    if rule:
        merged = dict(current or {})
        merged.update(cleaned)
        _check_date_order(merged, *rule)
    return cleaned


def _copy_default(default):
    if isinstance(default, list):
        return list(default)
    if isinstance(default, dict):
        return dict(default)
    return default
