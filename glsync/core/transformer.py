"""
Field transformation from loosely typed Glide rows into Supabase records.

Each column mapping entry declares a Glide data type. Values are coerced
per entry; a bad value drops that one field and is reported as a
FieldError, while a row without its stable identifier is rejected whole.
"""

import logging
import math
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Tuple
from urllib.parse import urlparse

from .models import (
    ColumnMapping,
    ErrorType,
    FieldError,
    GlMapping,
    GlideDataType,
    SyncRecord,
    TransformResult,
)

logger = logging.getLogger(__name__)

_TRUE_STRINGS = {"true", "yes", "1"}
_FALSE_STRINGS = {"false", "no", "0"}
_DATE_FORMATS = (
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%m/%d/%Y %H:%M",
)
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_MISSING = object()


class FieldValidationError(ValueError):
    """A value cannot be represented as its declared type."""


def coerce_number(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, bool):
        raise FieldValidationError(f"expected a number, got boolean {value!r}")
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise FieldValidationError(f"non-finite number {value!r}")
        return value
    if isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            raise FieldValidationError(f"not a number: {value!r}")
        if not math.isfinite(number):
            raise FieldValidationError(f"non-finite number {value!r}")
        return number
    raise FieldValidationError(f"expected a number, got {type(value).__name__}")


def coerce_boolean(value: Any) -> Any:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise FieldValidationError(f"not a boolean: {value!r}")


def coerce_datetime(value: Any) -> Any:
    """Return an ISO-8601 string for a date value."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch milliseconds
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()
        except (OverflowError, OSError, ValueError):
            raise FieldValidationError(f"timestamp out of range: {value!r}")
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).isoformat()
        except ValueError:
            pass
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).isoformat()
            except ValueError:
                continue
        raise FieldValidationError(f"unparseable date: {value!r}")
    raise FieldValidationError(f"expected a date, got {type(value).__name__}")


def coerce_text(value: Any, data_type: GlideDataType, column_name: str = "") -> Any:
    """Coerce to text. Malformed URIs and emails are only warned about."""
    if value is None:
        return None
    text = value if isinstance(value, str) else str(value)

    if data_type == GlideDataType.IMAGE_URI and text:
        parsed = urlparse(text)
        if not (parsed.scheme and parsed.netloc):
            logger.warning(f"Malformed URI in {column_name}: {text!r}")
    elif data_type == GlideDataType.EMAIL_ADDRESS and text:
        if not _EMAIL_RE.match(text):
            logger.warning(f"Malformed email in {column_name}: {text!r}")
    return text


def coerce_value(value: Any, data_type: GlideDataType, column_name: str = "") -> Any:
    if data_type == GlideDataType.NUMBER:
        return coerce_number(value)
    if data_type == GlideDataType.BOOLEAN:
        return coerce_boolean(value)
    if data_type == GlideDataType.DATE_TIME:
        return coerce_datetime(value)
    return coerce_text(value, data_type, column_name)


def read_field(row: Dict[str, Any], column: ColumnMapping) -> Any:
    """Read by Glide column id, falling back to the column's display name."""
    if column.glide_column_id in row:
        return row[column.glide_column_id]
    if column.glide_column_name and column.glide_column_name in row:
        return row[column.glide_column_name]
    return _MISSING


class FieldTransformer:
    """Transforms Glide rows for one mapping."""

    def __init__(self, mapping: GlMapping):
        self.mapping = mapping
        self.identifier = mapping.identifier_mapping()
        self.columns = [c for c in mapping.column_mappings if not c.is_identifier]

    def _identifier_value(self, row: Dict[str, Any]) -> Any:
        value = read_field(row, self.identifier)
        if value is _MISSING or value is None:
            return None
        text = str(value).strip()
        return text or None

    def transform(self, row: Dict[str, Any]) -> TransformResult:
        row_id = self._identifier_value(row)
        if row_id is None:
            return TransformResult(
                record=None,
                errors=[FieldError(
                    error_type=ErrorType.VALIDATION_ERROR,
                    message="missing required identifier",
                    glide_column_id=self.identifier.glide_column_id,
                    glide_column_name=self.identifier.glide_column_name,
                    supabase_column_name=self.identifier.supabase_column_name,
                    raw_value=row.get(self.identifier.glide_column_id),
                )],
            )

        record = SyncRecord(glide_row_id=row_id)
        errors: List[FieldError] = []

        for column in self.columns:
            raw = read_field(row, column)
            if raw is _MISSING:
                continue
            try:
                record.values[column.supabase_column_name] = coerce_value(
                    raw, column.data_type, column.supabase_column_name
                )
            except FieldValidationError as e:
                errors.append(self._field_error(ErrorType.VALIDATION_ERROR, column, row_id, raw,
                                                f"Invalid {column.data_type.value} value for "
                                                f"{column.glide_column_name or column.glide_column_id} "
                                                f"-> {column.supabase_column_name}: {e}"))
            except Exception as e:
                errors.append(self._field_error(ErrorType.TRANSFORM_ERROR, column, row_id, raw,
                                                f"Failed to transform "
                                                f"{column.glide_column_name or column.glide_column_id} "
                                                f"-> {column.supabase_column_name}: {e}"))

        return TransformResult(record=record, errors=errors)

    @staticmethod
    def _field_error(
        error_type: ErrorType, column: ColumnMapping, row_id: str, raw: Any, message: str
    ) -> FieldError:
        return FieldError(
            error_type=error_type,
            message=message,
            glide_row_id=row_id,
            glide_column_id=column.glide_column_id,
            glide_column_name=column.glide_column_name,
            supabase_column_name=column.supabase_column_name,
            raw_value=raw,
        )

    def transform_rows(self, rows: Iterable[Dict[str, Any]]) -> Tuple[List[SyncRecord], List[FieldError], int]:
        """Transform a page. Returns (records, errors, rejected_count)."""
        records: List[SyncRecord] = []
        errors: List[FieldError] = []
        rejected = 0
        for row in rows:
            result = self.transform(row)
            errors.extend(result.errors)
            if result.rejected:
                rejected += 1
            else:
                records.append(result.record)
        return records, errors, rejected


class PassthroughTransformer(FieldTransformer):
    """Copies mapped fields verbatim, keyed by glide_row_id, without coercion."""

    def transform(self, row: Dict[str, Any]) -> TransformResult:
        row_id = self._identifier_value(row)
        if row_id is None:
            return TransformResult(
                record=None,
                errors=[FieldError(
                    error_type=ErrorType.VALIDATION_ERROR,
                    message="missing required identifier",
                    glide_column_id=self.identifier.glide_column_id,
                    supabase_column_name=self.identifier.supabase_column_name,
                )],
            )

        record = SyncRecord(glide_row_id=row_id)
        for column in self.columns:
            raw = read_field(row, column)
            if raw is not _MISSING:
                record.values[column.supabase_column_name] = raw
        return TransformResult(record=record)
