from typing import Any, Dict, Optional, Sequence

from sqlmodel import Session, select

from ..errors import Conflict, DuplicateCode, NotFound, ValidationFailed
from ..models import Program, RoleEnum, User
from ..utils.sqlmodel_helpers import apply_partial_update, normalize_payload_for_model


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_student_code(code: str) -> str:
    return code.strip().upper()


def find_by_email(session: Session, email: str) -> Optional[User]:
    return session.exec(select(User).where(User.email == normalize_email(email))).first()


def find_by_student_code(session: Session, code: str) -> Optional[User]:
    return session.exec(select(User).where(User.student_code == normalize_student_code(code))).first()


def get_user(session: Session, user_id: int, role: Optional[RoleEnum] = None) -> User:
    user = session.get(User, user_id)
    if not user or (role is not None and user.role != role):
        label = role.value.capitalize() if role else "User"
        raise NotFound(f"{label} not found", details={"user_id": user_id})
    return user


def list_users(session: Session, role: Optional[RoleEnum] = None, program_id: Optional[int] = None) -> Sequence[User]:
    stmt = select(User)
    if role is not None:
        stmt = stmt.where(User.role == role)
    if program_id is not None:
        stmt = stmt.where(User.program_id == program_id)
    return session.exec(stmt.order_by(User.last_name, User.first_name)).all()


def _ensure_email_free(session: Session, email: str, exclude_id: Optional[int] = None) -> None:
    existing = find_by_email(session, email)
    if existing and existing.id != exclude_id:
        raise Conflict("Email already registered", details={"email": email})


def create_user(session: Session, data: Dict[str, Any]) -> User:
    values = normalize_payload_for_model(User, data)
    values["email"] = normalize_email(values["email"])
    _ensure_email_free(session, values["email"])
    role = RoleEnum(values["role"])
    if role == RoleEnum.student:
        if not values.get("student_code"):
            raise ValidationFailed("Students need a student code")
        values["student_code"] = normalize_student_code(values["student_code"])
        if find_by_student_code(session, values["student_code"]):
            raise DuplicateCode(
                f"Student code already exists: {values['student_code']}",
                details={"student_code": values["student_code"]},
            )
        if values.get("program_id") is not None and not session.get(Program, values["program_id"]):
            raise NotFound("Program not found", details={"program_id": values["program_id"]})
    else:
        values["student_code"] = None
        values["program_id"] = None
    user = User(**values)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def update_user(session: Session, user_id: int, data: Dict[str, Any]) -> User:
    user = get_user(session, user_id)
    values = normalize_payload_for_model(User, data, protected={"role"})
    if "email" in values and values["email"]:
        values["email"] = normalize_email(values["email"])
        _ensure_email_free(session, values["email"], exclude_id=user.id)
    if values.get("student_code"):
        values["student_code"] = normalize_student_code(values["student_code"])
        other = find_by_student_code(session, values["student_code"])
        if other and other.id != user.id:
            raise DuplicateCode(
                f"Student code already exists: {values['student_code']}",
                details={"student_code": values["student_code"]},
            )
    if values.get("program_id") is not None and not session.get(Program, values["program_id"]):
        raise NotFound("Program not found", details={"program_id": values["program_id"]})
    apply_partial_update(user, values)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user
