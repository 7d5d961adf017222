"""
Pydantic models and plain data types for the sync engine.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..config import EXTERNAL_ID_COLUMN, GLIDE_ROW_ID_FIELD


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class MappingConfigError(ValueError):
    """Raised when a table mapping cannot be synced as configured."""


class SyncDirection(str, Enum):
    """Direction a mapping synchronizes in"""
    TO_SUPABASE = "to_supabase"
    TO_GLIDE = "to_glide"
    BOTH = "both"


class SyncStatus(str, Enum):
    """Run log states"""
    STARTED = "started"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ErrorType(str, Enum):
    """Error ledger taxonomy"""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    TRANSFORM_ERROR = "TRANSFORM_ERROR"
    API_ERROR = "API_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    NETWORK_ERROR = "NETWORK_ERROR"


class GlideDataType(str, Enum):
    """Declared column types in a column mapping"""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE_TIME = "date-time"
    IMAGE_URI = "image-uri"
    EMAIL_ADDRESS = "email-address"


class ColumnMapping(BaseModel):
    """One Glide column to Supabase column rule"""
    glide_column_id: str
    glide_column_name: str = ""
    supabase_column_name: str
    data_type: GlideDataType = GlideDataType.STRING

    @field_validator("data_type", mode="before")
    @classmethod
    def parse_data_type(cls, value: Any) -> GlideDataType:
        # Unknown Glide types are copied as text
        try:
            return GlideDataType(value)
        except ValueError:
            return GlideDataType.STRING

    @property
    def is_identifier(self) -> bool:
        return (
            self.glide_column_id == GLIDE_ROW_ID_FIELD
            and self.supabase_column_name == EXTERNAL_ID_COLUMN
        )


class GlConnection(BaseModel):
    """Glide app credentials"""
    model_config = ConfigDict(extra="ignore")

    id: str
    app_id: str
    api_key: str
    app_name: Optional[str] = None
    status: Optional[str] = None
    last_sync: Optional[str] = None


class GlMapping(BaseModel):
    """A Glide table paired with a Supabase table"""
    model_config = ConfigDict(extra="ignore")

    id: str
    connection_id: str
    glide_table: str
    glide_table_display_name: Optional[str] = None
    supabase_table: str
    sync_direction: SyncDirection = SyncDirection.TO_SUPABASE
    enabled: bool = True
    column_mappings: List[ColumnMapping] = Field(default_factory=list)

    @field_validator("column_mappings", mode="before")
    @classmethod
    def parse_column_mappings(cls, value: Any) -> List[Dict[str, Any]]:
        """Accept the stored dict keyed by Glide column id as well as a list."""
        if value is None:
            return []
        if isinstance(value, dict):
            entries = []
            for column_id, rule in value.items():
                entry = dict(rule or {})
                entry.setdefault("glide_column_id", column_id)
                entries.append(entry)
            return entries
        return value

    def identifier_mapping(self) -> ColumnMapping:
        for column in self.column_mappings:
            if column.is_identifier:
                return column
        raise MappingConfigError(
            f"Mapping {self.id} has no column mapping from {GLIDE_ROW_ID_FIELD} "
            f"to {EXTERNAL_ID_COLUMN}"
        )


class SyncErrorRecord(BaseModel):
    """A row of gl_sync_errors"""
    model_config = ConfigDict(extra="ignore")

    id: str
    mapping_id: str
    error_type: ErrorType
    error_message: str
    record_data: Optional[Dict[str, Any]] = None
    retryable: bool = False
    resolved: bool = False
    resolved_at: Optional[str] = None
    resolution_notes: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class GlidePage:
    rows: List[Dict[str, Any]]
    next_token: Optional[str] = None


@dataclass
class SyncRecord:
    """A Glide row after transformation, keyed by its stable id."""
    glide_row_id: str
    values: Dict[str, Any] = field(default_factory=dict)

    def get(self, column: str, default: Any = None) -> Any:
        if column == EXTERNAL_ID_COLUMN:
            return self.glide_row_id
        return self.values.get(column, default)

    def to_row(self) -> Dict[str, Any]:
        row = dict(self.values)
        row[EXTERNAL_ID_COLUMN] = self.glide_row_id
        return row


@dataclass
class FieldError:
    error_type: ErrorType
    message: str
    glide_row_id: Optional[str] = None
    glide_column_id: Optional[str] = None
    glide_column_name: Optional[str] = None
    supabase_column_name: Optional[str] = None
    raw_value: Any = None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "glide_row_id": self.glide_row_id,
            "glide_column_id": self.glide_column_id,
            "glide_column_name": self.glide_column_name,
            "supabase_column_name": self.supabase_column_name,
            "raw_value": self.raw_value,
        }


@dataclass
class TransformResult:
    record: Optional[SyncRecord]
    errors: List[FieldError] = field(default_factory=list)

    @property
    def rejected(self) -> bool:
        return self.record is None


@dataclass(frozen=True)
class WriteOptions:
    """Per-call write behaviour threaded through the writer."""
    skip_derived_triggers: bool = False


@dataclass
class WriteResult:
    succeeded: int = 0
    failed: int = 0
    chunks: List[int] = field(default_factory=list)


@dataclass
class SyncResult:
    success: bool
    records_processed: int = 0
    failed_records: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    log_id: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": self.success,
            "recordsProcessed": self.records_processed,
            "failedRecords": self.failed_records,
            "errors": self.errors,
        }
        if self.error:
            body["error"] = self.error
        return body
