"""
Prescription review

Customers submit the metadata of an uploaded prescription (the file itself is
stored elsewhere); admins approve or reject it. Patients only see their own
records, admins see everything.
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import create_document, get_document, get_documents, to_object_id, update_document
from errors import AuthorizationError, NotFoundError, ValidationError
from notifier import record_notification
from schemas import Prescription, PrescriptionCreate

logger = logging.getLogger(__name__)

PRESCRIPTION_STATUSES = ("pending", "approved", "rejected")


class PrescriptionRepository:
    def __init__(self, db: Database):
        self.db = db

    def _actor(self, actor_id: Optional[str]) -> Dict[str, Any]:
        user = get_document("user", actor_id, database=self.db) if actor_id else None
        if user is None:
            raise AuthorizationError("Unknown or missing acting user")
        return user

    def _require_admin(self, actor_id: Optional[str]) -> Dict[str, Any]:
        actor = self._actor(actor_id)
        if actor.get("role") != "admin":
            raise AuthorizationError("Only admins can review prescriptions")
        return actor

    def _load(self, prescription_id: str) -> Dict[str, Any]:
        prescription = get_document("prescription", prescription_id, database=self.db)
        if prescription is None:
            raise NotFoundError("Prescription not found")
        return prescription

    def submit(self, payload: PrescriptionCreate) -> Dict[str, Any]:
        patient = get_document("user", payload.user_id, database=self.db)
        if patient is None:
            raise NotFoundError("User not found")
        if payload.order_id:
            order = get_document("order", payload.order_id, database=self.db)
            if order is None or order.get("user_id") != payload.user_id:
                raise NotFoundError("Order not found")

        record = Prescription(
            **payload.model_dump(),
            user={"display_name": patient.get("display_name") or "", "email": patient.get("email") or ""},
        )
        prescription_id = create_document("prescription", record, database=self.db)
        logger.info("Prescription %s submitted by %s", prescription_id, payload.user_id)
        return self._load(prescription_id)

    def list_prescriptions(self, actor_id: Optional[str], status: Optional[str] = None) -> List[Dict[str, Any]]:
        """All prescriptions, newest first. Admin only."""
        self._require_admin(actor_id)
        filt: Dict[str, Any] = {}
        if status and status != "all":
            filt["status"] = status
        return get_documents("prescription", filt, sort=[("created_at", -1)], database=self.db)

    def list_user_prescriptions(self, user_id: str, actor_id: Optional[str]) -> List[Dict[str, Any]]:
        actor = self._actor(actor_id)
        if actor["id"] != user_id and actor.get("role") != "admin":
            raise AuthorizationError("Not allowed to view these prescriptions")
        return get_documents("prescription", {"user_id": user_id}, sort=[("created_at", -1)], database=self.db)

    def get_prescription(self, prescription_id: str, actor_id: Optional[str]) -> Dict[str, Any]:
        actor = self._actor(actor_id)
        prescription = self._load(prescription_id)
        if prescription.get("user_id") != actor["id"] and actor.get("role") != "admin":
            raise AuthorizationError("Not allowed to view this prescription")
        return prescription

    def update_status(self, prescription_id: str, status: str, actor_id: Optional[str], notes: str = "") -> Dict[str, Any]:
        reviewer = self._require_admin(actor_id)
        self._load(prescription_id)
        if status not in PRESCRIPTION_STATUSES:
            raise ValidationError("Invalid status. Must be 'pending', 'approved', or 'rejected'")

        fields = {"status": status, "review_notes": notes or "", "reviewed_by": reviewer["id"]}
        if not update_document("prescription", prescription_id, fields, database=self.db):
            raise NotFoundError("Prescription not found")
        updated = self._load(prescription_id)
        logger.info("Prescription %s marked %s by %s", prescription_id, status, reviewer["id"])

        if status != "pending":
            try:
                record_notification(
                    self.db,
                    updated["user_id"],
                    "Prescription Update",
                    f"Your prescription has been {status}.",
                    {"type": "prescription_update", "prescriptionId": prescription_id, "status": status},
                )
            except PyMongoError:
                logger.warning("Could not store in-app notification for %s", updated["user_id"], exc_info=True)
        return updated

    def delete_prescription(self, prescription_id: str, actor_id: Optional[str]) -> None:
        actor = self._actor(actor_id)
        prescription = self._load(prescription_id)
        if prescription.get("user_id") != actor["id"] and actor.get("role") != "admin":
            raise AuthorizationError("Not allowed to delete this prescription")
        self.db["prescription"].delete_one({"_id": to_object_id(prescription_id)})
        logger.info("Deleted prescription %s", prescription_id)
