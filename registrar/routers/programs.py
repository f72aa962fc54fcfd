from fastapi import APIRouter, Depends
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from ..db import get_session
from ..models import LanguageEnum, Program, ProgramTypeEnum
from ..security import require_roles
from ..services import catalog
from ..services.credits import recompute_program_credits


router = APIRouter(prefix="/programs", tags=["programs"])


class ProgramCreate(BaseModel):
    code_es: Optional[str] = None
    code_en: Optional[str] = None
    name_es: Optional[str] = None
    name_en: Optional[str] = None
    description_es: Optional[str] = None
    description_en: Optional[str] = None
    type: ProgramTypeEnum
    degree: Optional[str] = None
    language: LanguageEnum = LanguageEnum.es
    duration_bimesters: int = Field(gt=0)
    tuition_per_credit: Optional[float] = None
    is_active: bool = True


class ProgramUpdate(BaseModel):
    code_es: Optional[str] = None
    code_en: Optional[str] = None
    name_es: Optional[str] = None
    name_en: Optional[str] = None
    description_es: Optional[str] = None
    description_en: Optional[str] = None
    type: Optional[ProgramTypeEnum] = None
    degree: Optional[str] = None
    language: Optional[LanguageEnum] = None
    duration_bimesters: Optional[int] = None
    tuition_per_credit: Optional[float] = None
    is_active: Optional[bool] = None


@router.get("/", response_model=List[Program])
def list_programs(
    is_active: Optional[bool] = None,
    type: Optional[ProgramTypeEnum] = None,
    language: Optional[LanguageEnum] = None,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "professor", "student")),
):
    return catalog.list_programs(session, is_active=is_active, program_type=type, language=language)


@router.post("/", response_model=Program, status_code=201)
def create_program(payload: ProgramCreate, session=Depends(get_session), user=Depends(require_roles("admin"))):
    return catalog.create_program(session, payload.model_dump())


@router.get("/{program_id}", response_model=Program)
def get_program(program_id: int, session=Depends(get_session), user=Depends(require_roles("admin", "professor", "student"))):
    return catalog.get_program(session, program_id)


@router.put("/{program_id}", response_model=Program)
def update_program(program_id: int, payload: ProgramUpdate, session=Depends(get_session), user=Depends(require_roles("admin"))):
    return catalog.update_program(session, program_id, payload.model_dump(exclude_unset=True))


@router.patch("/{program_id}", response_model=Program)
def patch_program(program_id: int, payload: ProgramUpdate, session=Depends(get_session), user=Depends(require_roles("admin"))):
    return update_program(program_id, payload, session=session, user=user)


@router.delete("/{program_id}")
def delete_program(program_id: int, session=Depends(get_session), user=Depends(require_roles("admin"))):
    catalog.delete_program(session, program_id)
    return {"ok": True}


@router.get("/{program_id}/courses", response_model=List[Dict[str, Any]])
def list_program_courses(
    program_id: int,
    only_active: bool = False,
    session=Depends(get_session),
    user=Depends(require_roles("admin", "professor", "student")),
):
    return catalog.list_program_courses(session, program_id, only_active=only_active)


@router.post("/{program_id}/recompute-credits")
def recompute_credits(program_id: int, session=Depends(get_session), user=Depends(require_roles("admin"))):
    total = recompute_program_credits(session, program_id)
    session.commit()
    return {"program_id": program_id, "total_credits": total}
