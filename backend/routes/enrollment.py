"""
Enrollment routes — register which class and stream a student sits in,
and expose the active grading scale.
"""

from fastapi import APIRouter, HTTPException, Request

router = APIRouter()


@router.post("/enrollments", status_code=201)
async def enroll_student(payload: dict, request: Request):
    """Register or replace a student's enrollment (class, stream, year)."""
    data = {
        "student_id": payload.get("student_id", payload.get("studentId")),
        "first_name": payload.get("first_name", payload.get("firstName")),
        "last_name": payload.get("last_name", payload.get("lastName")),
        "admission_number": payload.get("admission_number", payload.get("admissionNumber")),
        "class_id": payload.get("class_id", payload.get("classId")),
        "stream": payload.get("stream"),
        "academic_year": payload.get("academic_year", payload.get("academicYear")),
    }
    try:
        return request.app.state.roster.enroll(data)
    except ValueError as exc:
        raise HTTPException(422, str(exc))


@router.get("/classes/{class_id}/students")
async def class_students(class_id: str, request: Request):
    """Students currently enrolled in a class."""
    return {"class": class_id, "students": request.app.state.roster.students_in(class_id)}


@router.get("/grading-scale")
async def grading_scale(request: Request):
    """Active grading scale and exam weights, for legends and mark entry pages."""
    engine = request.app.state.engine
    return {
        **engine.scale.to_dict(),
        "weights": dict(engine.weights),
        "ranking_method": engine.ranking_method,
    }
