# backend/errors.py
"""
Error taxonomy and the error-ID reporting helper.

Entity-level errors (NotFound, ValidationError) go straight back to the
caller. Sync-level errors are routed through handle_error(), which writes
full details to errors.jsonl and hands back a short id that can be shown
to the user.
"""
import os
import json
import uuid
import traceback
from datetime import datetime
from typing import Optional, Dict, Any

from .logging_setup import get_logger

logger = get_logger('errors')

ERROR_LOG_FILE_NAME = 'errors.jsonl'


class ProductiFlowError(Exception):
    """Base class for all backend errors."""
    pass


class NotFound(ProductiFlowError, KeyError):
    """Raised when an update references an id absent from the store."""

    def __init__(self, collection: str, entity_id: str):
        self.collection = collection
        self.entity_id = entity_id
        super().__init__(f"{collection} record '{entity_id}' not found")

    def __str__(self):
        return self.args[0]


class ValidationError(ProductiFlowError, ValueError):
    """Raised when an entity payload is malformed. Nothing has been written."""
    pass


class StoreIOError(ProductiFlowError):
    """Raised when the underlying persistence layer fails."""
    pass


class ImportFormatError(ProductiFlowError, ValueError):
    """Raised when an import document is malformed. Nothing has been written."""
    pass


def handle_error(
    operation: str,
    error: BaseException,
    context: Optional[Dict[str, Any]] = None,
    log_dir: Optional[str] = None,
    environment: str = 'development'
) -> str:
    """
    Log full error details and return a short error id for reporting.

    Args:
        operation: Name of the operation that failed (e.g. 'sync', 'import_data')
        error: Exception that occurred
        context: Optional additional context
        log_dir: Directory for errors.jsonl; when None only the logger is used
        environment: 'production' suppresses the traceback in the log output

    Returns:
        8-character error id
    """
    error_id = str(uuid.uuid4())[:8]
    details = {
        'error_id': error_id,
        'timestamp': datetime.now().isoformat(),
        'operation': operation,
        'error_type': type(error).__name__,
        'error_message': str(error),
        'traceback': ''.join(traceback.format_exception(type(error), error, error.__traceback__)),
        'environment': environment,
        'context': context or {},
    }

    if log_dir:
        try:
            os.makedirs(log_dir, exist_ok=True)
            with open(os.path.join(log_dir, ERROR_LOG_FILE_NAME), 'a', encoding='utf-8') as f:
                f.write(json.dumps(details, default=str) + '\n')
        except OSError as log_error:
            logger.warning(f"[Errors] Failed to write error log: {log_error}")

    logger.error(f"[ERROR {error_id}] {operation}: {error}")
    if environment != 'production':
        logger.debug(details['traceback'])
    return error_id
