"""
Results routes — mark entry, bulk import and the report endpoints.
"""

import logging
from typing import Optional

from fastapi import APIRouter, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse

from core.marks import MarkValidationError, canonical_exam_type, validate_mark_entry
from core.parser import import_marks, read_sheet, to_records
from core.reports import (
    build_class_final_report,
    build_class_marklist,
    build_student_exam_report,
    build_student_final_report,
)
from core.store import read_class_term

logger = logging.getLogger(__name__)

router = APIRouter()


def _exam_type(value: str) -> str:
    exam_type = canonical_exam_type(value)
    if exam_type is None:
        raise HTTPException(400, f"Unknown exam type '{value}'. Use Opener, Midterm or Endterm.")
    return exam_type


def _class_view(request: Request, class_id: str, term_id: str, academic_year: Optional[str]) -> dict:
    """Roster and marks for one class, term and academic year, read together."""
    state = request.app.state
    view = read_class_term(state.store, state.roster, class_id, term_id, academic_year)
    if not view["roster"] and not view["entries"]:
        raise HTTPException(404, f"No students or marks found for class '{class_id}'.")
    return view


def _enrolled_student(request: Request, student_id: Optional[str]) -> dict:
    if not student_id:
        raise HTTPException(401, "Missing authenticated student id.")
    student = request.app.state.roster.get(student_id)
    if student is None:
        raise HTTPException(404, f"Student '{student_id}' is not enrolled in any class.")
    return student


@router.post("/results/enter")
async def enter_marks(payload: dict, request: Request):
    """Enter or update one student's mark for a subject, term and exam type."""
    try:
        entry = validate_mark_entry(payload)
    except MarkValidationError as exc:
        logger.warning("Rejected mark entry: %s", exc)
        raise HTTPException(422, str(exc))

    created = request.app.state.store.upsert(entry)
    graded_view = {
        "studentId": entry["student_id"],
        "subjectId": entry["subject_id"],
        "termId": entry["term_id"],
        "academicYear": entry["academic_year"],
        "examType": entry["exam_type"],
        "marksObtained": entry["marks_obtained"],
        "outOf": entry["out_of"],
        "comment": entry["comment"],
    }
    return JSONResponse(
        status_code=201 if created else 200,
        content={
            "message": "Marks entered successfully" if created else "Marks updated successfully",
            "result": graded_view,
        },
    )


@router.post("/results/import")
async def import_marks_file(
    request: Request,
    file: UploadFile = File(...),
    entered_by: Optional[str] = Form(None),
    class_id: Optional[str] = Form(None),
    term_id: Optional[str] = Form(None),
    academic_year: Optional[str] = Form(None),
    exam_type: Optional[str] = Form(None),
):
    """
    Import a CSV/XLSX sheet of marks. Form fields fill columns the sheet
    does not carry (e.g. one exam type for the whole sheet).
    """
    content = await file.read()
    try:
        df = read_sheet(content, filename=file.filename)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    except Exception as exc:
        raise HTTPException(400, f"Failed to read '{file.filename}': {exc}")

    defaults = {
        "class_id": class_id,
        "term_id": term_id,
        "academic_year": academic_year,
        "exam_type": exam_type,
    }
    result = import_marks(to_records(df, defaults), request.app.state.store, entered_by=entered_by)
    return {"filename": file.filename, **result}


@router.get("/class-results/{class_id}/{term_id}/{exam_type}")
async def class_results(
    class_id: str,
    term_id: str,
    exam_type: str,
    request: Request,
    academic_year: Optional[str] = None,
):
    """Class marklist for one exam sitting."""
    exam = _exam_type(exam_type)
    view = _class_view(request, class_id, term_id, academic_year)
    return build_class_marklist(
        view["entries"], view["roster"], class_id, term_id, exam, request.app.state.engine,
        academic_year=view["academic_year"],
    )


@router.get("/class-final-reports/{class_id}/{term_id}")
async def class_final_reports(
    class_id: str,
    term_id: str,
    request: Request,
    academic_year: Optional[str] = None,
):
    """Class final report: all sittings blended per subject, ranked."""
    view = _class_view(request, class_id, term_id, academic_year)
    return build_class_final_report(
        view["entries"], view["roster"], class_id, term_id, request.app.state.engine,
        academic_year=view["academic_year"], previous_entries=view["previous_entries"],
    )


@router.get("/student/results/{term_id}/{exam_type}")
async def student_results(
    term_id: str,
    exam_type: str,
    request: Request,
    academic_year: Optional[str] = None,
    x_student_id: Optional[str] = Header(None),
):
    """The authenticated student's marks for one sitting."""
    exam = _exam_type(exam_type)
    student = _enrolled_student(request, x_student_id)
    class_id = student["class_id"]
    view = read_class_term(request.app.state.store, request.app.state.roster, class_id, term_id, academic_year)

    report = build_student_exam_report(
        student["student_id"], view["entries"], view["roster"], class_id, term_id, exam,
        request.app.state.engine, academic_year=view["academic_year"],
    )
    if report is None:
        raise HTTPException(404, f"No results found for student '{student['student_id']}'.")
    return report


@router.get("/student/final-report/{term_id}")
async def student_final_report(
    term_id: str,
    request: Request,
    academic_year: Optional[str] = None,
    x_student_id: Optional[str] = Header(None),
):
    """The authenticated student's final term report card."""
    student = _enrolled_student(request, x_student_id)
    class_id = student["class_id"]
    view = read_class_term(request.app.state.store, request.app.state.roster, class_id, term_id, academic_year)

    report = build_student_final_report(
        student["student_id"], view["entries"], view["roster"], class_id, term_id,
        request.app.state.engine, academic_year=view["academic_year"],
        previous_entries=view["previous_entries"],
    )
    if report is None:
        raise HTTPException(404, f"No results found for student '{student['student_id']}'.")
    return report
