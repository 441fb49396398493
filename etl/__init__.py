# WORKFLOW: ETL (Extract, Transform, Load) package for TARIC bulk imports.
# Used by: Sync endpoints, the daily scheduler, scripts/seed_reference_data.py
# Modules include:
# 1. ingest_zip.py - Store uploaded workbooks, unpack ZIP exports, report local files
# 2. taric_parser.py - Read nomenclature and duties workbooks into row dicts
# 3. duty_parser.py - Parse duty cells (percentages, FREE, compound expressions)
# 4. transform_canonical.py - Merge nomenclature and duty rows into mirror records
# 5. validators.py - Validate records before they reach the local tariff mirror
# 6. sync_pipeline.py - Single-flight sync runs with progress in the sync log
#
# ETL flow: XLSX / ZIP -> Parse -> Merge -> Validate -> Translate -> Upsert mirror -> Sync log

"""
ETL package for TARIC workbook ingestion into the local tariff mirror.
"""
