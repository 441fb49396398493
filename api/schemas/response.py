# WORKFLOW: Pydantic models for every result the tariff engine produces.
# Used by: services/* (as return types), API endpoints (as response_model), tests
# Schemas include:
# 1. Measure / RateResult - hydrated trade measures and the merged duty-rate result
# 2. ValidationResult / BreadcrumbEntry - code existence, declarability and ancestor chain
# 3. HierarchyTree / ChildGroup - grouped declarable children for drill-down
# 4. SearchResult - description search with chapter statistics and pagination
# 5. LookupV2Result / Candidate - discriminated exact / parent_node / not_found outcome
# 6. BatchLookupResult - per-item results and errors of a batch lookup
# 7. Sync* - sync log, status and run result of the bulk import pipeline
# 8. *Page - paginated listings of mirror rows, agreements and overrides
#
# Response flow: Service -> Pydantic model -> model_dump(mode="json") for cache -> API response

from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime
from enum import Enum


class ClassificationLevel(str, Enum):
    CHAPTER = "chapter"
    HEADING = "heading"
    SUBHEADING = "subheading"
    CN = "cn"
    TARIC = "taric"


class MatchStatus(str, Enum):
    EXACT = "exact"
    PARENT_NODE = "parent_node"
    NOT_FOUND = "not_found"
    ERROR = "error"


class SyncState(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Measure(BaseModel):
    measure_id: Optional[str] = None
    measure_type_id: Optional[str] = None
    measure_type_description: Optional[str] = None
    measure_type_description_cn: Optional[str] = None
    geographical_area_id: Optional[str] = None
    geographical_area_description: Optional[str] = None
    geographical_area_description_cn: Optional[str] = None
    duty_expression: Optional[str] = None
    effective_start: Optional[str] = None
    effective_end: Optional[str] = None


class RateResult(BaseModel):
    hs_code: str
    hs_code10: str
    origin_country_code: Optional[str] = None
    duty_rate: Optional[float] = None
    third_country_duty: Optional[float] = None
    anti_dumping_rate: Optional[float] = None
    anti_dumping_rate_range: Optional[str] = None
    countervailing_rate: Optional[float] = None
    vat_rate: Optional[float] = None
    total_duty_rate: Optional[float] = None
    goods_description: Optional[str] = None
    goods_description_cn: Optional[str] = None
    formatted_description: Optional[str] = None
    data_source: Optional[str] = None
    measures: List[Measure] = Field(default_factory=list)
    total_measures: int = 0
    regulation_id: Optional[str] = None
    valid_from: Optional[str] = None
    note: Optional[str] = None
    matched_hs_code: Optional[str] = None
    exact_match: Optional[bool] = None
    has_anti_dumping: bool = False
    has_countervailing: bool = False
    query_time: datetime = Field(default_factory=datetime.utcnow)
    from_cache: bool = False
    saved_to_db: Optional[str] = None
    db_error: Optional[str] = None


class BreadcrumbEntry(BaseModel):
    code: str
    description: Optional[str] = None
    description_cn: Optional[str] = None
    level: str
    indent: Optional[int] = None


class SimilarCode(BaseModel):
    code: str
    description: Optional[str] = None


class ValidationResult(BaseModel):
    input_code: str
    normalized_code: str
    is_valid: bool = False
    is_declarable: bool = False
    level: Optional[ClassificationLevel] = None
    has_children: bool = False
    child_count: int = 0
    declarable_count: Optional[int] = None
    description: Optional[str] = None
    description_cn: Optional[str] = None
    parent_code: Optional[str] = None
    parent_description: Optional[str] = None
    breadcrumb: List[BreadcrumbEntry] = Field(default_factory=list)
    similar_codes: List[SimilarCode] = Field(default_factory=list)
    error: Optional[str] = None
    upstream_error: bool = False
    from_cache: bool = False


class Section(BaseModel):
    number: Optional[int] = None
    title: Optional[str] = None
    title_cn: Optional[str] = None


class HierarchyChild(BaseModel):
    code: str
    description: Optional[str] = None
    description_cn: Optional[str] = None
    level: Optional[str] = None
    declarable: bool = False
    has_children: Optional[bool] = None
    third_country_duty: Optional[float] = None
    vat_rate: Optional[float] = None
    anti_dumping_rate: Optional[float] = None


class ChildGroup(BaseModel):
    group_code: str
    group_title: str
    group_title_cn: Optional[str] = None
    children: List[HierarchyChild] = Field(default_factory=list)


class HierarchyTree(BaseModel):
    code: str
    description: Optional[str] = None
    description_cn: Optional[str] = None
    level: Optional[str] = None
    section: Optional[Section] = None
    breadcrumb: List[BreadcrumbEntry] = Field(default_factory=list)
    child_groups: List[ChildGroup] = Field(default_factory=list)
    children: List[HierarchyChild] = Field(default_factory=list)
    total_children: int = 0
    declarable_count: int = 0
    is_declarable: bool = False
    has_more: bool = False
    error: Optional[str] = None
    from_cache: bool = False


class ChapterStat(BaseModel):
    chapter: str
    description: Optional[str] = None
    count: int = 0


class SearchHit(BaseModel):
    hs_code: str
    description: Optional[str] = None
    description_cn: Optional[str] = None
    declarable: bool = False
    chapter: str
    chapter_description: Optional[str] = None
    section: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    score: Optional[float] = None
    is_exact_match: bool = False


class SearchResult(BaseModel):
    query: str
    total: int = 0
    chapter_stats: List[ChapterStat] = Field(default_factory=list)
    results: List[SearchHit] = Field(default_factory=list)
    page: int = 1
    page_size: int = 20
    has_more: bool = False
    error: Optional[str] = None
    from_cache: bool = False


class Candidate(BaseModel):
    code: str
    description: Optional[str] = None
    match_score: int = 0


class LookupV2Result(BaseModel):
    input_code: str
    normalized_code: str
    match_status: MatchStatus
    exact_match: Optional[RateResult] = None
    validation: Optional[ValidationResult] = None
    hierarchy: Optional[HierarchyTree] = None
    candidates: List[Candidate] = Field(default_factory=list)
    suggestion: str = ""
    warning: Optional[str] = None
    error: Optional[str] = None
    query_time: datetime = Field(default_factory=datetime.utcnow)
    from_cache: bool = False
    saved_to_db: Optional[str] = None
    db_error: Optional[str] = None


class BatchItem(BaseModel):
    hs_code: str
    data: RateResult


class BatchError(BaseModel):
    hs_code: str
    error: str


class BatchLookupResult(BaseModel):
    results: List[BatchItem] = Field(default_factory=list)
    errors: List[BatchError] = Field(default_factory=list)
    total_count: int = 0


class DeclarableCode(BaseModel):
    code: str
    description: Optional[str] = None
    declarable: bool = True
    duty_rate: Optional[float] = None
    third_country_duty: Optional[float] = None
    anti_dumping_rate: Optional[float] = None


class DeclarableList(BaseModel):
    prefix: str
    total: int
    codes: List[DeclarableCode] = Field(default_factory=list)
    from_cache: bool = False


class MeasureDetails(BaseModel):
    hs_code: str
    measures: List[Measure] = Field(default_factory=list)


class CountryCode(BaseModel):
    code: str
    name: Optional[str] = None
    type: str = "C"


class CountryCodeList(BaseModel):
    countries: List[CountryCode] = Field(default_factory=list)
    from_cache: bool = False


class CacheStats(BaseModel):
    valid: int = 0
    expired: int = 0
    total: int = 0


class ApiHealth(BaseModel):
    available: bool
    response_time_ms: Optional[float] = None
    error: Optional[str] = None
    api_source: str
    timestamp: datetime
    cache_stats: CacheStats


class SyncLogOut(BaseModel):
    id: str
    sync_type: str
    data_source: str
    file_name: Optional[str] = None
    taric_version: Optional[str] = None
    status: SyncState
    progress: int = 0
    total_records: int = 0
    inserted_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_by: Optional[str] = None

    class Config:
        from_attributes = True


class TariffStats(BaseModel):
    total: int = 0
    active: int = 0
    from_taric: int = 0
    last_sync_time: Optional[datetime] = None


class FileInfo(BaseModel):
    name: str
    local_file: str
    file_path: str
    exists: bool
    size: Optional[int] = None
    modified_time: Optional[datetime] = None


class SyncStatusOut(BaseModel):
    current_sync: Optional[SyncLogOut] = None
    last_sync: Optional[SyncLogOut] = None
    tariff_stats: TariffStats
    files: Dict[str, FileInfo] = Field(default_factory=dict)
    taric_version: Optional[str] = None


class SyncResult(BaseModel):
    success: bool
    sync_id: str
    total_records: int = 0
    inserted_count: int = 0
    updated_count: int = 0
    failed_count: int = 0
    duration_seconds: float = 0.0
    taric_version: Optional[str] = None


class SyncStarted(BaseModel):
    sync_id: str
    status: SyncState = SyncState.RUNNING
    message: str
    files: Optional[Dict[str, bool]] = None


class SyncLogPage(BaseModel):
    items: List[SyncLogOut] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 20


class TariffRateOut(BaseModel):
    id: int
    hs_code: str
    hs_code_10: Optional[str] = None
    goods_description: Optional[str] = None
    goods_description_cn: Optional[str] = None
    origin_country: Optional[str] = None
    origin_country_code: Optional[str] = None
    geographical_area: Optional[str] = None
    duty_rate: Optional[float] = None
    third_country_duty: Optional[float] = None
    vat_rate: Optional[float] = None
    anti_dumping_rate: Optional[float] = None
    countervailing_rate: Optional[float] = None
    preferential_rate: Optional[float] = None
    measure_type: Optional[str] = None
    measure_code: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    data_source: Optional[str] = None
    api_source: Optional[str] = None
    taric_version: Optional[str] = None
    is_active: bool = True

    class Config:
        from_attributes = True


class TariffRatePage(BaseModel):
    items: List[TariffRateOut] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 20


class TradeAgreementOut(BaseModel):
    id: int
    agreement_code: str
    agreement_name: str
    agreement_name_cn: Optional[str] = None
    agreement_type: Optional[str] = None
    country_code: Optional[str] = None
    country_name: Optional[str] = None
    geographical_area: Optional[str] = None
    preferential_rate: Optional[float] = None
    valid_from: Optional[str] = None
    valid_to: Optional[str] = None
    taric_version: Optional[str] = None

    class Config:
        from_attributes = True


class TradeAgreementPage(BaseModel):
    items: List[TradeAgreementOut] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 50


class AntiDumpingOverrideOut(BaseModel):
    origin_country_code: str
    heading: str
    hs_code_8: Optional[str] = None
    description: Optional[str] = None
    description_cn: Optional[str] = None
    duty_rate: float
    anti_dumping_rate: float
    anti_dumping_rate_range: Optional[str] = None
    countervailing_rate: Optional[float] = None
    regulation_id: Optional[str] = None
    valid_from: Optional[str] = None

    class Config:
        from_attributes = True
