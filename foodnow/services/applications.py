"""
Partner Applications

Restaurants and riders apply to join the marketplace; an admin approves or
rejects each application once. Payloads are validated against the tagged
union in foodnow.schemas before anything is stored, whichever caller
submits them.
"""

import logging
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from foodnow.core.clock import Clock, utcnow
from foodnow.core.exceptions import ConflictError, NotFoundError, ValidationFailed
from foodnow.models import ApplicationStatus
from foodnow.schemas import application_adapter
from foodnow.services.persistence import BasePersistenceProvider, Record

logger = logging.getLogger(__name__)

APPLICATIONS = "applications"


class ApplicationService:
    def __init__(self, store: BasePersistenceProvider, clock: Clock = utcnow):
        self.store = store
        self.clock = clock

    async def submit(self, payload: Mapping[str, Any]) -> Record:
        """
        Validate and store a new application.

        Raises:
            ValidationFailed: Unknown ``kind`` or invalid fields for that kind
        """
        try:
            application = application_adapter.validate_python(dict(payload))
        except ValidationError as exc:
            raise ValidationFailed(
                "Invalid application",
                errors=[
                    {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
                    for err in exc.errors()
                ],
            ) from exc

        details = application.model_dump(exclude={"kind", "applicant_id"})
        record = await self.store.insert(APPLICATIONS, {
            "kind": application.kind,
            "applicant_id": application.applicant_id,
            "status": ApplicationStatus.PENDING.value,
            "details": details,
            "reviewed_by": None,
            "review_notes": None,
            "created_at": self.clock(),
            "reviewed_at": None,
        })

        logger.info(f"{application.kind.title()} application {record['id']} from {application.applicant_id}")
        return record

    async def get(self, application_id: str) -> Record:
        record = await self.store.get(APPLICATIONS, application_id)
        if record is None:
            raise NotFoundError(f"Application {application_id} not found", application_id=application_id)
        return record

    async def review(
        self,
        application_id: str,
        decision: str,
        admin_id: str,
        notes: Optional[str] = None,
    ) -> Record:
        """
        Approve or reject a pending application.

        Raises:
            NotFoundError: Unknown application
            ConflictError: Already reviewed
        """
        status = ApplicationStatus(decision)
        if status == ApplicationStatus.PENDING:
            raise ValidationFailed("Decision must be approved or rejected")

        current = await self.get(application_id)
        if current["status"] != ApplicationStatus.PENDING.value:
            raise ConflictError(
                f"Application already {current['status']}",
                application_id=application_id,
            )

        record = await self.store.update(
            APPLICATIONS,
            application_id,
            {
                "status": status.value,
                "reviewed_by": admin_id,
                "review_notes": notes,
                "reviewed_at": self.clock(),
            },
            expected={"status": ApplicationStatus.PENDING.value},
        )

        logger.info(f"Application {application_id} {status.value} by {admin_id}")
        return record
