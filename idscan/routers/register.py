from fastapi import APIRouter, Depends, HTTPException

from database.db import get_student_by_qr, qr_payload_for
from idscan.roles import Role, ScanSessionContext
from idscan.routers.auth import token_response
from idscan.routers.students import StudentCreate, insert_student, qr_response
from idscan.security import issue_session_token, require_capability
from idscan.services.qr import generate_qr_base64

router = APIRouter()


@router.post("/register")
def register_student(payload: StudentCreate):
    """Public self-registration. Returns the new student's QR and a student session."""
    student = insert_student(payload)
    token, claims = issue_session_token(student["student_code"], role=Role.STUDENT.value)
    return {
        **token_response(token, claims),
        "student": student,
        "qr_code": student["qr_code"],
        "image": generate_qr_base64(student["qr_code"]),
    }


@router.get("/me/qr")
def my_qr(
    format: str = "json",
    context: ScanSessionContext = Depends(require_capability("view_own_qr")),
):
    student = get_student_by_qr(qr_payload_for(context.subject))
    if not student:
        raise HTTPException(status_code=404, detail="Student not found.")
    return qr_response(student, format)
