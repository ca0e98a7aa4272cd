"""Service wiring and FastAPI dependencies."""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request

from safewatch.config import Settings, settings as default_settings
from safewatch.repositories.base import StoreProvider
from safewatch.services.alert_dispatcher import AlertDispatcher, TaskScheduler
from safewatch.services.alert_synthesizer import AlertSynthesizer
from safewatch.services.cluster_detector import ClusterDetector
from safewatch.services.reports import ReportService
from safewatch.services.vote_ledger import VoteLedger

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the routes need, built once per application."""

    stores: StoreProvider
    detector: ClusterDetector
    synthesizer: AlertSynthesizer
    dispatcher: AlertDispatcher
    ledger: VoteLedger
    reports: ReportService


def build_store_provider(config: Settings) -> StoreProvider:
    if config.storage_backend == "memory":
        from safewatch.repositories.memory import MemoryStoreProvider

        logger.warning("Using in-memory storage; data is lost on restart")
        return MemoryStoreProvider()

    from safewatch.db.session import get_session_maker
    from safewatch.repositories.sql import SqlStoreProvider

    return SqlStoreProvider(get_session_maker())


def build_services(
    config: Optional[Settings] = None,
    stores: Optional[StoreProvider] = None,
    scheduler: Optional[TaskScheduler] = None,
    clock=None,
) -> Services:
    """Assemble the services from settings. ``stores`` and ``clock`` override for tests."""
    config = config or default_settings
    stores = stores or build_store_provider(config)

    detector = ClusterDetector(
        alert_threshold=config.alert_threshold,
        radius_meters=config.cluster_radius_meters,
        time_window_hours=config.cluster_time_window_hours,
        clock=clock,
    )
    synthesizer = AlertSynthesizer(
        alert_threshold=config.alert_threshold,
        radius_meters=config.cluster_radius_meters,
        time_window_hours=config.cluster_time_window_hours,
        clock=clock,
    )
    dispatcher = AlertDispatcher(
        stores,
        detector,
        synthesizer,
        scheduler=scheduler,
        timeout_seconds=config.alert_pipeline_timeout_seconds,
    )
    ledger = VoteLedger(
        stores,
        dispatcher=dispatcher,
        max_distance_km=config.max_voting_distance_km,
        verification_threshold=config.verification_threshold,
        flag_threshold=config.flag_threshold,
    )
    return Services(
        stores=stores,
        detector=detector,
        synthesizer=synthesizer,
        dispatcher=dispatcher,
        ledger=ledger,
        reports=ReportService(stores, dispatcher=dispatcher),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_vote_ledger(services: Services = Depends(get_services)) -> VoteLedger:
    return services.ledger


def get_report_service(services: Services = Depends(get_services)) -> ReportService:
    return services.reports
