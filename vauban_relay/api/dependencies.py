"""
Vauban Relay - FastAPI Dependencies

Route access to the components held by the application container.
"""

from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status

from ..config import Settings
from ..kernel.event_system import EventBus
from ..security.api_keys import M2MGate
from ..services.publisher import PublishService
from ..services.relay_service import RelayService
from ..services.scheduler import ScheduledPublishService


def get_relay_app(request: Request):
    """Get the RelayApp instance from application state."""
    relay_app = getattr(request.app.state, "relay", None)
    if relay_app is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Relay application not initialized",
        )
    return relay_app


RelayAppDep = Annotated[Any, Depends(get_relay_app)]


def get_app_settings(relay_app: RelayAppDep) -> Settings:
    return relay_app.settings


def get_event_bus(relay_app: RelayAppDep) -> EventBus:
    return relay_app.event_bus


def get_relay_service(relay_app: RelayAppDep) -> RelayService:
    return relay_app.relay_service


def get_publish_service(relay_app: RelayAppDep) -> PublishService:
    return relay_app.publish_service


def get_scheduler(relay_app: RelayAppDep) -> ScheduledPublishService:
    return relay_app.scheduler


def get_m2m_gate(relay_app: RelayAppDep) -> M2MGate:
    return relay_app.m2m_gate


SettingsDep = Annotated[Settings, Depends(get_app_settings)]
EventBusDep = Annotated[EventBus, Depends(get_event_bus)]
RelayServiceDep = Annotated[RelayService, Depends(get_relay_service)]
PublishServiceDep = Annotated[PublishService, Depends(get_publish_service)]
M2MGateDep = Annotated[M2MGate, Depends(get_m2m_gate)]
SchedulerDep = Annotated[ScheduledPublishService, Depends(get_scheduler)]
