import sqlite3

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel

from database.db import (
    StudentRow,
    add_student,
    delete_student,
    get_all_students,
    get_student_by_id,
    get_student_by_qr,
    update_student,
)
from idscan.core.sequencing import compare_by, stable_sort
from idscan.roles import Role, ScanSessionContext
from idscan.security import require_capability
from idscan.services.qr import generate_qr_base64, generate_qr_png
from idscan.services.runtime import BOARD

router = APIRouter()

_by_name = compare_by("name")


class StudentCreate(BaseModel):
    student_code: str
    name: str
    department: str
    program: str


class StudentUpdate(BaseModel):
    department: str | None = None
    program: str | None = None


@router.get("/students")
def students(_context: ScanSessionContext = Depends(require_capability("scan"))):
    return stable_sort(get_all_students(), _by_name)


@router.get("/students/lookup")
def student_lookup(qr_code: str, _context: ScanSessionContext = Depends(require_capability("scan"))):
    clean_code = qr_code.strip()
    if not clean_code:
        raise HTTPException(status_code=400, detail="qr_code is required.")
    student = get_student_by_qr(clean_code)
    if not student:
        return {"found": False}
    return {"found": True, **student}


@router.get("/students/{student_id}")
def student_detail(student_id: int, _context: ScanSessionContext = Depends(require_capability("scan"))):
    student = get_student_by_id(student_id)
    if not student:
        raise HTTPException(status_code=404, detail="Student not found.")
    return student


@router.get("/students/{student_id}/qr")
def student_qr(
    student_id: int,
    format: str = "json",
    _context: ScanSessionContext = Depends(require_capability("scan")),
):
    student = get_student_by_id(student_id)
    if not student:
        raise HTTPException(status_code=404, detail="Student not found.")
    return qr_response(student, format)


def qr_response(student: StudentRow, format: str = "json"):
    if format == "png":
        return Response(content=generate_qr_png(student["qr_code"]), media_type="image/png")
    if format != "json":
        raise HTTPException(status_code=400, detail="format must be json or png.")
    return {
        "student_id": student["id"],
        "qr_code": student["qr_code"],
        "image": generate_qr_base64(student["qr_code"]),
    }


def insert_student(payload: StudentCreate) -> StudentRow:
    student_code = payload.student_code.strip()
    name = payload.name.strip()
    department = payload.department.strip()
    program = payload.program.strip()

    if not student_code:
        raise HTTPException(status_code=400, detail="Student code is required.")
    if not name:
        raise HTTPException(status_code=400, detail="Name is required.")
    if not department:
        raise HTTPException(status_code=400, detail="Department is required.")
    if not program:
        raise HTTPException(status_code=400, detail="Program is required.")

    try:
        return add_student(student_code, name, department, program)
    except sqlite3.IntegrityError:
        raise HTTPException(status_code=409, detail="Student code already exists.")


@router.post("/students")
def create_student(
    payload: StudentCreate,
    _context: ScanSessionContext = Depends(require_capability("manage_students")),
):
    return insert_student(payload)


@router.patch("/students/{student_id}")
def patch_student(
    student_id: int,
    payload: StudentUpdate,
    _context: ScanSessionContext = Depends(require_capability("manage_students")),
):
    department = payload.department.strip() if payload.department is not None else None
    program = payload.program.strip() if payload.program is not None else None
    if department == "" or program == "":
        raise HTTPException(status_code=400, detail="Department and program cannot be blank.")

    student = update_student(student_id, department=department, program=program)
    if not student:
        raise HTTPException(status_code=404, detail="Student not found.")
    return student


@router.delete("/students/{student_id}")
def remove_student(
    student_id: int,
    context: ScanSessionContext = Depends(require_capability("manage_students")),
):
    if context.role is not Role.SUPER_ADMIN:
        raise HTTPException(status_code=403, detail="Only a super admin can delete students.")
    if not delete_student(student_id):
        raise HTTPException(status_code=404, detail="Student not found.")
    # attendance rows went with the student via ON DELETE CASCADE
    BOARD.clear()
    return {"ok": True, "deleted_id": student_id}
