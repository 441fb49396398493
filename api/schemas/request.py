# WORKFLOW: Pydantic request schemas for API input validation.
# Used by: FastAPI endpoints for request validation and documentation
# Schemas include:
# 1. BatchLookupRequest - For /taric/batch-lookup
# 2. SyncTriggerRequest - For /sync/trigger
#
# Validation flow: HTTP request -> Pydantic validation -> Endpoint processing
# Query-string parameters (origin_country, page, ...) are validated inline with Query().

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Literal


class BatchLookupRequest(BaseModel):
    """Request schema for batch rate lookups."""
    hs_codes: List[str] = Field(..., min_length=1, max_length=50, description="HS/TARIC codes to look up")
    origin_country: Optional[str] = Field(None, min_length=2, max_length=2, description="Origin country code")
    concurrency: int = Field(3, ge=1, le=10, description="Codes looked up per wave")

    @field_validator('origin_country')
    @classmethod
    def upper_origin(cls, v):
        return v.upper() if v else v


class SyncTriggerRequest(BaseModel):
    """Request schema for triggering a sync from local files."""
    sync_type: Literal["full", "incremental"] = Field("full", description="Sync type")
    enable_translation: bool = Field(True, description="Translate goods descriptions during import")
