from pydantic import BaseModel
from typing import Any, List, Optional

# For every checked timestamp of a record
# Valid -> canonical RFC 3339 string, error None
# Invalid -> canonical None, error is the diagnostic message
# Empty cell -> both None

class TimestampField(BaseModel):
    name: str
    raw: Optional[str] = None
    canonical: Optional[str] = None
    error: Optional[str] = None

class TimestampRecord(BaseModel):
    record_id: Optional[Any] = None
    fields: List[TimestampField]
