"""Bulk import schemas."""
from typing import Optional, List, Dict, Any, Literal
import uuid

from pydantic import BaseModel, Field, model_validator


class BulkImportOptions(BaseModel):
    """Mode flags shared by product and order imports."""
    skip_duplicates: bool = True
    update_existing: bool = False
    validate_only: bool = False
    strict: bool = False
    # Order imports only: drop unknown SKUs instead of failing the order
    skip_invalid_products: bool = False


class BulkImportRequest(BaseModel):
    """
    Either ``records`` (structured array) or ``csv_data`` (delimited text).

    Records stay loosely typed so each one can be validated independently
    and reported by position rather than rejecting the whole request.
    """
    records: Optional[List[Dict[str, Any]]] = None
    csv_data: Optional[str] = None
    delimiter: Literal[",", ";", "\t"] = ","
    has_header: bool = True
    business_id: Optional[uuid.UUID] = None
    options: BulkImportOptions = Field(default_factory=BulkImportOptions)

    @model_validator(mode="after")
    def require_one_source(self):
        if self.records is None and self.csv_data is None:
            raise ValueError("Either records or csv_data is required")
        if self.records is not None and self.csv_data is not None:
            raise ValueError("Provide records or csv_data, not both")
        return self


class RecordError(BaseModel):
    record: int
    line: Optional[int] = None
    error: str
    identifier: Optional[str] = None


class ImportSummary(BaseModel):
    total: int
    created: int
    updated: int
    skipped: int = 0
    errors: int


class BulkImportResult(BaseModel):
    """Outcome of a bulk import; always returned, even on partial failure."""
    created: List[Dict[str, Any]] = []
    updated: List[Dict[str, Any]] = []
    skipped: List[Dict[str, Any]] = []
    errors: List[RecordError] = []
    summary: ImportSummary
    validate_only: bool = False
