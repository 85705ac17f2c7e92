from __future__ import annotations

from functools import lru_cache
from typing import Union

from src.core.config import get_settings
from src.repositories.current_records_repository import CurrentRecordsRepository
from src.repositories.directory_repository import DirectoryRepository
from src.repositories.legacy_records_repository import LegacyRecordsRepository
from src.services.currency_service import CurrencyService
from src.services.performance_report_service import PerformanceReportService
from src.services.report_cache import CachedPerformanceReportService, ReportCache
from src.services.source_adapters import CurrentSourceAdapter, LegacySourceAdapter


@lru_cache
def get_legacy_records_repository() -> LegacyRecordsRepository:
    return LegacyRecordsRepository()


@lru_cache
def get_current_records_repository() -> CurrentRecordsRepository:
    return CurrentRecordsRepository()


@lru_cache
def get_directory_repository() -> DirectoryRepository:
    return DirectoryRepository()


@lru_cache
def get_currency_service() -> CurrencyService:
    return CurrencyService()


@lru_cache
def get_report_cache() -> ReportCache:
    return ReportCache(ttl_seconds=get_settings().report_cache_ttl_seconds)


def get_performance_report_service() -> Union[PerformanceReportService, CachedPerformanceReportService]:
    service = PerformanceReportService(
        legacy_adapter=LegacySourceAdapter(repository=get_legacy_records_repository()),
        current_adapter=CurrentSourceAdapter(repository=get_current_records_repository()),
        directory_repository=get_directory_repository(),
        currency_service=get_currency_service(),
    )
    cache = get_report_cache()
    if cache.enabled:
        return CachedPerformanceReportService(service=service, cache=cache)
    return service
