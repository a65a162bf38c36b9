"""
Collaborator gateways.

Thin bridges to the services the lease engine depends on but does not own:

- Application service: approved-application lookup at lease creation
- Property service: listing status (AVAILABLE / RENTED) on activate/terminate/expire
- Notification service: fire-and-forget lifecycle events

Property and notification calls are only ever made by the outbox dispatcher,
after the lease change has committed. Documents are stored as an opaque
``contract_document_id`` and never fetched.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol
from uuid import UUID

import httpx

from lease_engine.core.config import get_settings
from lease_engine.core.errors import CollaboratorUnavailableError
from lease_engine.models.enums import ApplicationStatus, NotificationEvent, PropertyStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplicationRecord:
    """What the engine needs to know about a rental application."""

    id: UUID
    status: ApplicationStatus
    property_id: UUID
    tenant_id: UUID
    landlord_id: UUID


class ApplicationGateway(Protocol):
    async def get_application(self, application_id: UUID) -> Optional[ApplicationRecord]: ...


class PropertyGateway(Protocol):
    async def set_status(self, property_id: UUID, status: PropertyStatus) -> bool: ...


class NotificationGateway(Protocol):
    async def emit(
        self,
        event: NotificationEvent,
        recipient_ids: list[UUID],
        payload: dict[str, Any],
    ) -> bool: ...


class _HttpBridge:
    """Shared httpx plumbing for the HTTP gateways."""

    def __init__(self, base_url: str, timeout: float, api_key: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key

    def _headers(self) -> dict[str, str]:
        headers = {"X-Source-App": "lease-engine"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers


class HttpApplicationGateway(_HttpBridge):
    """Bridge to the application service."""

    async def get_application(self, application_id: UUID) -> Optional[ApplicationRecord]:
        """Fetch an application; None if the service does not know it.

        Unlike the fire-and-forget bridges, a transport failure here is an
        error: lease creation cannot proceed without the answer.
        """
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    f"{self.base_url}/lease-applications/{application_id}",
                    headers=self._headers(),
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            logger.error(f"[APPLICATION] Lookup error for {application_id}: {e}")
            raise CollaboratorUnavailableError("Application service is unavailable")

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            logger.warning(f"[APPLICATION] Lookup failed: {response.status_code} {response.text}")
            raise CollaboratorUnavailableError(
                f"Application service returned {response.status_code}"
            )

        data = response.json()
        try:
            return ApplicationRecord(
                id=UUID(str(data["id"])),
                status=ApplicationStatus(str(data["status"]).upper()),
                property_id=UUID(str(data["propertyId"])),
                tenant_id=UUID(str(data["tenantId"])),
                landlord_id=UUID(str(data["landlordId"])),
            )
        except (KeyError, ValueError) as e:
            logger.error(f"[APPLICATION] Malformed application {application_id}: {e}")
            raise CollaboratorUnavailableError("Application service returned a malformed record")


class HttpPropertyGateway(_HttpBridge):
    """Bridge to the property service."""

    async def set_status(self, property_id: UUID, status: PropertyStatus) -> bool:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.patch(
                    f"{self.base_url}/properties/{property_id}/status",
                    json={"status": status.value},
                    headers=self._headers(),
                    timeout=self.timeout,
                )

                if response.status_code not in (200, 204):
                    logger.warning(f"[PROPERTY] Status update failed: {response.status_code} {response.text}")
                    return False

                logger.info(f"[PROPERTY] {property_id} -> {status.value}")
                return True
        except httpx.HTTPError as e:
            logger.error(f"[PROPERTY] Status update error: {e}")
            return False


class HttpNotificationGateway(_HttpBridge):
    """Bridge to the notification service."""

    async def emit(
        self,
        event: NotificationEvent,
        recipient_ids: list[UUID],
        payload: dict[str, Any],
    ) -> bool:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"{self.base_url}/notifications/events",
                    json={
                        "event": event.value,
                        "recipientIds": [str(r) for r in recipient_ids],
                        "relatedEntityType": "PAYMENT" if event.value.startswith("PAYMENT") else "LEASE_AGREEMENT",
                        "payload": payload,
                    },
                    headers=self._headers(),
                    timeout=self.timeout,
                )

                if response.status_code not in (200, 201, 202):
                    logger.warning(f"[NOTIFY] {event.value} failed: {response.status_code}")
                    return False
                return True
        except httpx.HTTPError as e:
            logger.error(f"[NOTIFY] {event.value} error: {e}")
            return False


@dataclass
class Collaborators:
    """The external services one engine instance talks to."""

    applications: ApplicationGateway
    properties: PropertyGateway
    notifications: NotificationGateway


# Singleton
_collaborators: Optional[Collaborators] = None


def get_collaborators() -> Collaborators:
    """Get the HTTP-backed collaborator bundle."""
    global _collaborators
    if _collaborators is None:
        settings = get_settings()
        timeout = settings.collaborator_timeout_seconds
        key = settings.collaborator_api_key
        _collaborators = Collaborators(
            applications=HttpApplicationGateway(settings.application_service_url, timeout, key),
            properties=HttpPropertyGateway(settings.property_service_url, timeout, key),
            notifications=HttpNotificationGateway(settings.notification_service_url, timeout, key),
        )
    return _collaborators
