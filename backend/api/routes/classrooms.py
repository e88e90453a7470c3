from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.database import get_db
from schemas.classroom import ClassroomAssign, ClassroomCreate, ClassroomImport, ClassroomOut, ClassroomUpdate
from services import classroom_service


router = APIRouter()


@router.get("/", response_model=list[ClassroomOut])
def list_classrooms(
    exam_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[ClassroomOut]:
    return classroom_service.list_classrooms(db, exam_id=exam_id)


@router.post("/", response_model=ClassroomOut, status_code=201)
def create_classroom(payload: ClassroomCreate, db: Session = Depends(get_db)) -> ClassroomOut:
    return classroom_service.create_classroom(db, **payload.model_dump())


@router.post("/import", response_model=list[ClassroomOut], status_code=201)
def import_classrooms(payload: ClassroomImport, db: Session = Depends(get_db)) -> list[ClassroomOut]:
    return classroom_service.import_classrooms(db, [row.model_dump() for row in payload.rows])


@router.get("/{classroom_id}", response_model=ClassroomOut)
def get_classroom(classroom_id: uuid.UUID, db: Session = Depends(get_db)) -> ClassroomOut:
    return classroom_service.get_classroom(db, classroom_id)


@router.patch("/{classroom_id}", response_model=ClassroomOut)
def update_classroom(classroom_id: uuid.UUID, payload: ClassroomUpdate, db: Session = Depends(get_db)) -> ClassroomOut:
    # Only fields present in the body are touched; an explicit null unassigns.
    return classroom_service.update_classroom(db, classroom_id, **payload.model_dump(exclude_unset=True))


@router.patch("/{classroom_id}/assign", response_model=ClassroomOut)
def assign_supervisors(classroom_id: uuid.UUID, payload: ClassroomAssign, db: Session = Depends(get_db)) -> ClassroomOut:
    return classroom_service.assign_supervisors(db, classroom_id, **payload.model_dump(exclude_unset=True))
