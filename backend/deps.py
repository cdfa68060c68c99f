from fastapi import Depends, Request

from backend.services.analytics import AnalyticsEngine
from backend.services.gatekeeper import AccessGatekeeper
from backend.services.recorder import AttendanceRecorder
from database.db import EntityStore


def get_store(request: Request) -> EntityStore:
    return request.app.state.store


def get_gatekeeper(store: EntityStore = Depends(get_store)) -> AccessGatekeeper:
    return AccessGatekeeper(store)


def get_recorder(
    store: EntityStore = Depends(get_store),
    gatekeeper: AccessGatekeeper = Depends(get_gatekeeper),
) -> AttendanceRecorder:
    return AttendanceRecorder(store, gatekeeper)


def get_analytics(store: EntityStore = Depends(get_store)) -> AnalyticsEngine:
    return AnalyticsEngine(store)
