# WORKFLOW: Error taxonomy shared by the tariff engine, the sync pipeline and the API layer.
# Used by: services/*, etl/sync_pipeline.py, api/routers/*
# Errors:
# 1. UpstreamUnavailable - remote classification API unreachable, timed out or answered badly
# 2. InvalidUpstreamPayload - upstream JSON document does not have the JSON:API envelope shape
# 3. TariffCodeNotFound - no rate source produced anything for a code
# 4. SyncConflictError - a bulk sync was requested while another one is running
# 5. SyncNotSupported - cancellation of an in-flight sync
# 6. TranslationFailure - translation client gave up (always swallowed by callers)
#
# Validation problems and "code not found" during validation are NOT exceptions:
# they are returned as structured results with an error/match_status field.

from typing import Optional


class TaricError(Exception):
    """Base class for all tariff engine errors."""


class UpstreamUnavailable(TaricError):
    """Remote classification API could not be reached or returned an unusable answer."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class InvalidUpstreamPayload(UpstreamUnavailable):
    """Upstream answered 200 but the body is not a JSON:API document."""


class TariffCodeNotFound(TaricError):
    """No override, mirror or remote data exists for the requested code."""

    def __init__(self, hs_code: str):
        super().__init__(f"No tariff data found for code {hs_code}")
        self.hs_code = hs_code


class SyncConflictError(TaricError):
    """A bulk sync is already running."""

    def __init__(self, running_sync_id: Optional[str] = None):
        super().__init__("A sync is already running, please try again later")
        self.running_sync_id = running_sync_id


class SyncNotSupported(TaricError):
    """Requested sync operation is not supported."""


class TranslationFailure(TaricError):
    """Translation service failed after all retries."""
