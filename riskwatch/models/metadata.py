"""
Typed views over event metadata.

Metadata is stored exactly as the caller supplied it. These models name the
keys the engine recognizes for each event category so scoring code never
reaches into a raw dict. Unknown keys pass through untouched, and a
recognized key with a malformed value is treated as absent.
"""
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

M = TypeVar("M", bound=BaseModel)


class _Metadata(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class AuthMetadata(_Metadata):
    """Recognized keys on authentication events."""
    failed_attempts: Optional[int] = Field(None, alias="failedAttempts")
    new_device: bool = Field(False, alias="newDevice")
    new_location: bool = Field(False, alias="newLocation")


class DataAccessMetadata(_Metadata):
    """Recognized keys on data-access events."""
    bulk_operation: bool = Field(False, alias="bulkOperation")
    record_count: Optional[int] = Field(None, alias="recordCount")
    export_size: Optional[int] = Field(None, alias="exportSize")  # bytes


class SecurityEventMetadata(_Metadata):
    """Keys carried by the SECURITY_EVENT audit record that mirrors a SecurityEvent."""
    type: Optional[str] = None
    severity: Optional[str] = None
    title: Optional[str] = None


class TransmissionMetadata(_Metadata):
    """Keys read by the HIPAA transmission-security analysis."""
    encrypted: bool = False


def parse_metadata(model: Type[M], raw: Optional[Dict[str, Any]]) -> M:
    """Build a typed view of raw metadata, dropping recognized keys that fail validation."""
    data = dict(raw) if isinstance(raw, dict) else {}
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        for error in exc.errors():
            if error["loc"]:
                data.pop(error["loc"][0], None)
        return model.model_validate(data)
