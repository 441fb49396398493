# WORKFLOW: Database models for the local tariff mirror and sync bookkeeping.
# Used by: db/repository.py, rate sources, sync pipeline, API endpoints
# Models represent:
# 1. tariff_rates - local denormalized mirror of remote classification data
# 2. taric_sync_logs - one row per bulk import run (progress, counts, status)
# 3. trade_agreements - preferential agreements extracted from duty files
# 4. anti_dumping_overrides - country-specific anti-dumping/countervailing table
#
# Data flow: XLSX -> ETL -> merge -> tariff_rates (+ trade_agreements) -> rate sources -> API responses

from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, Text, Index
from sqlalchemy.orm import declarative_base
from datetime import datetime

Base = declarative_base()


class TariffRate(Base):
    __tablename__ = "tariff_rates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    hs_code = Column(String(10), nullable=False, index=True)  # 8-digit CN code (4 for heading rows)
    hs_code_10 = Column(String(10), nullable=True, index=True)
    taric_code = Column(String(10), nullable=True)
    goods_description = Column(Text, nullable=False, default="")
    goods_description_cn = Column(Text, nullable=True)
    origin_country = Column(String(100), nullable=True)
    origin_country_code = Column(String(10), nullable=True)
    geographical_area = Column(String(20), nullable=True)

    duty_rate = Column(Float, nullable=True)
    third_country_duty = Column(Float, nullable=True)
    vat_rate = Column(Float, nullable=True)
    anti_dumping_rate = Column(Float, nullable=True)
    countervailing_rate = Column(Float, nullable=True)
    preferential_rate = Column(Float, nullable=True)

    measure_type = Column(String(100), nullable=True)
    measure_code = Column(String(10), nullable=True)
    additional_code = Column(String(20), nullable=True)
    quota_order_number = Column(String(20), nullable=True)
    unit_name = Column(String(50), nullable=True)
    legal_base = Column(String(100), nullable=True)
    start_date = Column(String(10), nullable=True)
    end_date = Column(String(10), nullable=True)

    data_source = Column(String(50), nullable=False, default="taric")
    api_source = Column(String(50), nullable=True)
    taric_version = Column(String(20), nullable=True)
    last_sync_time = Column(DateTime, nullable=True)
    last_api_sync = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('idx_tariff_upsert_key', 'hs_code', 'origin_country_code', 'measure_type'),
        Index('idx_tariff_active', 'is_active'),
    )


class SyncLog(Base):
    __tablename__ = "taric_sync_logs"

    id = Column(String(40), primary_key=True)
    sync_type = Column(String(20), nullable=False, default="full")
    data_source = Column(String(20), nullable=False, default="excel")
    file_name = Column(String(255), nullable=True)
    taric_version = Column(String(20), nullable=True)
    status = Column(String(20), nullable=False, default="running")
    progress = Column(Integer, nullable=False, default=0)
    total_records = Column(Integer, nullable=False, default=0)
    inserted_count = Column(Integer, nullable=False, default=0)
    updated_count = Column(Integer, nullable=False, default=0)
    skipped_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_sync_status', 'status'),
    )


class TradeAgreement(Base):
    __tablename__ = "trade_agreements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    agreement_code = Column(String(20), nullable=False)
    agreement_name = Column(String(255), nullable=False, default="")
    agreement_name_cn = Column(String(255), nullable=True)
    agreement_type = Column(String(20), nullable=True)  # GSP, GSP+, EBA, EPA, FTA, CU, OTHER
    country_code = Column(String(10), nullable=True)
    country_name = Column(String(100), nullable=True)
    geographical_area = Column(String(20), nullable=True)
    preferential_rate = Column(Float, nullable=True)
    valid_from = Column(String(10), nullable=True)
    valid_to = Column(String(10), nullable=True)
    taric_version = Column(String(20), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_sync_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('idx_agreement_key', 'agreement_code', 'country_code'),
    )


class AntiDumpingOverride(Base):
    __tablename__ = "anti_dumping_overrides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    origin_country_code = Column(String(2), nullable=False)
    heading = Column(String(4), nullable=False)
    hs_code_8 = Column(String(8), nullable=True)
    heading_description = Column(Text, nullable=True)
    heading_description_cn = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    description_cn = Column(Text, nullable=True)
    duty_rate = Column(Float, nullable=False, default=0.0)
    anti_dumping_rate = Column(Float, nullable=False, default=0.0)
    anti_dumping_rate_range = Column(String(50), nullable=True)
    countervailing_rate = Column(Float, nullable=True)
    regulation_id = Column(String(50), nullable=True)
    valid_from = Column(String(10), nullable=True)
    note = Column(Text, nullable=True)

    __table_args__ = (
        Index('idx_override_origin_heading', 'origin_country_code', 'heading'),
    )
