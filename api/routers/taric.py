# WORKFLOW: Tariff classification and duty-rate endpoints.
# Used by: Order entry, customs documents and invoicing modules of the ERP
# Endpoints:
# 1. /taric/validate, /taric/hierarchy, /taric/search, /taric/declarable - nomenclature navigation
# 2. /taric/lookup, /taric/lookup-v2, /taric/batch-lookup, /taric/measures - rates and measures
# 3. /taric/countries, /taric/api-health, DELETE /taric/cache - reference data and operations
# 4. /taric/tariff-rates, /taric/trade-agreements, /taric/anti-dumping - local tables
#
# Request flow: HTTP -> minimum-length check -> TaricEngine -> response model
# Not-found and invalid codes are 200 responses with error / match_status; only lookup raises 404.

import logging
import re
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from api.schemas.request import BatchLookupRequest
from api.schemas.response import (
    AntiDumpingOverrideOut,
    ApiHealth,
    BatchLookupResult,
    CountryCodeList,
    DeclarableList,
    HierarchyTree,
    LookupV2Result,
    MeasureDetails,
    RateResult,
    SearchResult,
    TariffRatePage,
    TradeAgreementPage,
    ValidationResult,
)
from core.config import settings
from core.exceptions import TariffCodeNotFound, UpstreamUnavailable
from db import repository
from db.session import get_db
from services.taric_engine import TaricEngine, create_taric_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/taric", tags=["taric"])


def get_taric_engine(db: Session = Depends(get_db)) -> TaricEngine:
    return create_taric_engine(db)


def require_digits(code: str, minimum: int) -> str:
    if len(re.sub(r'\D', '', code)) < minimum:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"HS code must contain at least {minimum} digits",
        )
    return code


def as_http_error(e: Exception, action: str) -> HTTPException:
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, TariffCodeNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, UpstreamUnavailable):
        logger.error(f"{action} failed, upstream unavailable: {e}")
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    logger.error(f"{action} failed: {e}")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"{action} failed: {e}")


OriginQuery = Query(None, min_length=2, max_length=2, description="ISO origin country code")


@router.get("/validate/{hs_code}", response_model=ValidationResult)
async def validate_code(hs_code: str, engine: TaricEngine = Depends(get_taric_engine)):
    """Existence, declarability, children and breadcrumb of a 2-10 digit code."""
    require_digits(hs_code, 2)
    try:
        return await engine.validate_code(hs_code)
    except Exception as e:
        raise as_http_error(e, "Validation")


@router.get("/hierarchy/{prefix}", response_model=HierarchyTree)
async def get_hierarchy(prefix: str, origin_country: Optional[str] = OriginQuery,
                        engine: TaricEngine = Depends(get_taric_engine)):
    require_digits(prefix, 2)
    try:
        return await engine.get_hierarchy(prefix, origin_country)
    except Exception as e:
        raise as_http_error(e, "Hierarchy")


@router.get("/search", response_model=SearchResult)
async def search(
    q: str = Query(..., min_length=2, description="Goods description"),
    chapter: Optional[str] = Query(None, pattern=r"^\d{2}$"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    engine: TaricEngine = Depends(get_taric_engine),
):
    try:
        return await engine.search_by_description(q, chapter, page, page_size)
    except Exception as e:
        raise as_http_error(e, "Search")


@router.get("/lookup/{hs_code}", response_model=RateResult)
async def lookup_rate(hs_code: str, origin_country: Optional[str] = OriginQuery, persist: bool = False,
                      engine: TaricEngine = Depends(get_taric_engine)):
    """
    Applicable duty, VAT, anti-dumping and countervailing rates.

    Local override and mirror data are used when the remote API is unreachable;
    404 when no source knows the code.
    """
    require_digits(hs_code, 6)
    try:
        logger.info(f"Rate lookup: HS={hs_code}, Origin={origin_country}")
        return await engine.lookup_rate(hs_code, origin_country, persist=persist)
    except Exception as e:
        raise as_http_error(e, "Rate lookup")


@router.get("/lookup-v2/{hs_code}", response_model=LookupV2Result)
async def lookup_v2(hs_code: str, origin_country: Optional[str] = OriginQuery, persist: bool = False,
                    engine: TaricEngine = Depends(get_taric_engine)):
    """exact | parent_node | not_found | error, with candidates for unknown codes."""
    require_digits(hs_code, 4)
    try:
        return await engine.lookup_v2(hs_code, origin_country, persist=persist)
    except Exception as e:
        raise as_http_error(e, "Lookup")


@router.post("/batch-lookup", response_model=BatchLookupResult)
async def batch_lookup(request: BatchLookupRequest, engine: TaricEngine = Depends(get_taric_engine)):
    if len(request.hs_codes) > settings.batch_max_codes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"At most {settings.batch_max_codes} codes per batch",
        )
    try:
        return await engine.batch_lookup(request.hs_codes, request.origin_country, request.concurrency)
    except Exception as e:
        raise as_http_error(e, "Batch lookup")


@router.get("/declarable/{prefix}", response_model=DeclarableList)
async def list_declarable(prefix: str, origin_country: Optional[str] = OriginQuery,
                          engine: TaricEngine = Depends(get_taric_engine)):
    require_digits(prefix, 4)
    try:
        return await engine.list_declarable_codes(prefix, origin_country)
    except Exception as e:
        raise as_http_error(e, "Declarable listing")


@router.get("/measures/{hs_code}", response_model=MeasureDetails)
async def get_measures(hs_code: str, origin_country: Optional[str] = OriginQuery,
                       engine: TaricEngine = Depends(get_taric_engine)):
    require_digits(hs_code, 6)
    try:
        return await engine.get_measure_details(hs_code, origin_country)
    except Exception as e:
        raise as_http_error(e, "Measure details")


@router.get("/countries", response_model=CountryCodeList)
async def get_countries(engine: TaricEngine = Depends(get_taric_engine)):
    try:
        return await engine.get_country_codes()
    except Exception as e:
        raise as_http_error(e, "Country listing")


@router.get("/api-health", response_model=ApiHealth)
async def api_health(engine: TaricEngine = Depends(get_taric_engine)):
    return await engine.check_api_health()


@router.delete("/cache")
async def clear_cache(engine: TaricEngine = Depends(get_taric_engine)):
    try:
        await engine.clear_cache()
        return {"success": True, "message": "Cache cleared"}
    except Exception as e:
        raise as_http_error(e, "Cache clear")


@router.get("/tariff-rates", response_model=TariffRatePage)
async def list_tariff_rates(
    prefix: Optional[str] = Query(None, pattern=r"^\d{1,10}$"),
    origin_country: Optional[str] = Query(None, max_length=10),
    is_active: Optional[bool] = None,
    min_duty: Optional[float] = Query(None, ge=0),
    max_duty: Optional[float] = Query(None, ge=0),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """Local mirror rows with prefix, origin, active, duty-range and text filters."""
    try:
        items, total = repository.list_tariff_rates(
            db, prefix=prefix, origin=origin_country, is_active=is_active,
            min_duty=min_duty, max_duty=max_duty, search=search, page=page, page_size=page_size,
        )
        return TariffRatePage(items=items, total=total, page=page, page_size=page_size)
    except Exception as e:
        raise as_http_error(e, "Tariff rate listing")


@router.get("/trade-agreements", response_model=TradeAgreementPage)
async def list_trade_agreements(
    agreement_type: Optional[str] = None,
    country_code: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    try:
        items, total = repository.list_trade_agreements(
            db, agreement_type=agreement_type, country_code=country_code, page=page, page_size=page_size,
        )
        return TradeAgreementPage(items=items, total=total, page=page, page_size=page_size)
    except Exception as e:
        raise as_http_error(e, "Trade agreement listing")


@router.get("/anti-dumping", response_model=List[AntiDumpingOverrideOut])
async def list_anti_dumping(origin_country: Optional[str] = OriginQuery, db: Session = Depends(get_db)):
    try:
        return repository.list_overrides(db, origin_country.upper() if origin_country else None)
    except Exception as e:
        raise as_http_error(e, "Anti-dumping listing")
