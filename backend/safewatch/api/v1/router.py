"""API v1 router aggregation."""

from fastapi import APIRouter

from safewatch.api.v1.routes import alerts, health, reports, votes

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["Health"])
api_router.include_router(reports.router, prefix="/reports", tags=["Reports"])
api_router.include_router(votes.router, prefix="/votes", tags=["Votes"])
api_router.include_router(alerts.router, prefix="/alerts", tags=["Alerts"])
