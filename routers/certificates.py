import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field
from pymongo.database import Database

import progress
from certificate_image import render_certificate
from config import settings
from database import get_db, to_object_id
from dependencies import get_current_user, require_admin
from payments import find_completed_purchase

logger = logging.getLogger(__name__)

router = APIRouter()


class IssueCertificateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(None, alias="userId")
    force_issue: bool = Field(False, alias="forceIssue")


def _course_or_404(db: Database, course_id: str) -> dict:
    oid = to_object_id(course_id)
    course = db["course"].find_one({"_id": oid}) if oid else None
    if course is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Course not found")
    return course


def _verification_url(certificate_id: str) -> str:
    return f"{settings.SITE_URL}/certificates/verify/{certificate_id}"


@router.get("")
def list_certificates(db: Database = Depends(get_db), current: dict = Depends(get_current_user)):
    purchases = list(db["purchase"].find({"user_id": current["_id"], "status": "completed"}))
    if not purchases:
        return {"success": True, "data": [], "message": "No purchased courses found"}

    course_ids = [p["course_id"] for p in purchases]
    courses = {c["_id"]: c for c in db["course"].find({"_id": {"$in": course_ids}})}
    progresses = {
        p["course_id"]: p for p in db["progress"].find({"user_id": current["_id"], "course_id": {"$in": course_ids}})
    }

    rows = []
    for purchase in purchases:
        course = courses.get(purchase["course_id"])
        if course is None:
            logger.warning("Purchase %s points at missing course %s", purchase["_id"], purchase["course_id"])
            continue
        record = progresses.get(course["_id"])
        view = progress.build_certificate_view(course, purchase, record)
        rows.append((view, record.get("completed_at") if record else None))
    return {"success": True, "data": progress.order_certificates(rows)}


@router.get("/verify/{certificate_id}")
def verify_certificate(certificate_id: str, db: Database = Depends(get_db)):
    return {"valid": True, "data": progress.verify_certificate(db, certificate_id)}


@router.get("/{course_id}")
def get_certificate(course_id: str, download: bool = Query(False), db: Database = Depends(get_db),
                    current: dict = Depends(get_current_user)):
    course = _course_or_404(db, course_id)
    if find_completed_purchase(db, current["_id"], course["_id"]) is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Course not purchased or payment not completed")

    record = db["progress"].find_one({"user_id": current["_id"], "course_id": course["_id"]})
    if record is None or record.get("percentage", 0) < 100:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Course not completed. Complete all lessons to get certificate.")

    certificate_id = progress.certificate_id_for(current["_id"], course["_id"])
    if download:
        record = progress.mark_certificate_issued(db, record, current["_id"], course)
        image = render_certificate(current["name"], course["title"], record.get("completed_at"),
                                   certificate_id, _verification_url(certificate_id))
        filename = f"{course['slug']}-certificate.png"
        return Response(content=image, media_type="image/png",
                        headers={"Content-Disposition": f'attachment; filename="{filename}"'})

    return {
        "success": True,
        "data": {
            "id": str(course["_id"]),
            "courseName": course["title"],
            "studentName": current["name"],
            "completedDate": progress.format_date(record.get("completed_at")),
            "available": progress.is_certificate_available(record),
            "certificateIssued": bool(record.get("certificate_issued")),
            "certificateId": certificate_id,
            "downloadUrl": f"/api/certificates/{course['_id']}?download=true",
            "verificationUrl": _verification_url(certificate_id),
        },
    }


@router.post("/{course_id}")
def issue_certificate(course_id: str, body: IssueCertificateRequest, db: Database = Depends(get_db),
                      admin: dict = Depends(require_admin)):
    if not body.user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User ID is required")
    user_oid = to_object_id(body.user_id)
    user = db["user"].find_one({"_id": user_oid}) if user_oid else None
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    course = _course_or_404(db, course_id)

    record = progress.issue_certificate(db, user["_id"], course, force=body.force_issue)
    logger.info("Admin %s issued certificate for %s to %s (force=%s)",
                admin["_id"], course["_id"], user["_id"], body.force_issue)
    certificate_id = progress.certificate_id_for(user["_id"], course["_id"])
    return {
        "success": True,
        "message": "Certificate issued successfully",
        "data": {
            "certificateId": certificate_id,
            "studentName": user["name"],
            "courseName": course["title"],
            "completedDate": progress.format_date(record.get("completed_at")),
            "certificateIssued": True,
            "verificationUrl": _verification_url(certificate_id),
        },
    }
