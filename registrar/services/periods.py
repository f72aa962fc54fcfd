import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from sqlalchemy import func, update
from sqlmodel import Session, select

from ..errors import DuplicateCode, InUse, NotFound, ValidationFailed
from ..models import CourseClass, Period, PeriodStatusEnum, Section
from ..utils.sqlmodel_helpers import apply_partial_update, normalize_payload_for_model


logger = logging.getLogger(__name__)


DATE_FIELDS = ("start_date", "end_date", "enrollment_start", "enrollment_end", "grading_deadline")


def _as_naive_utc(values: Dict[str, Any]) -> None:
    for key in DATE_FIELDS:
        value = values.get(key)
        if isinstance(value, datetime) and value.tzinfo is not None:
            values[key] = value.astimezone(timezone.utc).replace(tzinfo=None)


def _validate_dates(values: Dict[str, Any]) -> None:
    if values["start_date"] >= values["end_date"]:
        raise ValidationFailed("Start date must be before end date")
    if values["grading_deadline"] < values["end_date"]:
        raise ValidationFailed("Grading deadline must be on or after the end date")
    if values["enrollment_start"] > values["enrollment_end"]:
        raise ValidationFailed("Enrollment start must be on or before enrollment end")


def _validate_bimester(values: Dict[str, Any]) -> None:
    number = values.get("bimester_number")
    if number is None or not 1 <= number <= 6:
        raise ValidationFailed("Bimester number must be between 1 and 6", details={"bimester_number": number})


def _ensure_unique_code(session: Session, code: str, exclude_id: Optional[int] = None) -> None:
    stmt = select(Period).where(func.upper(Period.code) == code.strip().upper())
    if exclude_id is not None:
        stmt = stmt.where(Period.id != exclude_id)
    if session.exec(stmt).first():
        raise DuplicateCode(f"Period code already exists: {code}", details={"code": code})


def _clear_current_flag(session: Session, keep_id: Optional[int]) -> None:
    # Como máximo un periodo actual: se limpia el resto en la misma transacción
    stmt = update(Period).where(Period.is_current_period == True)  # noqa: E712
    if keep_id is not None:
        stmt = stmt.where(Period.id != keep_id)
    session.execute(stmt.values(is_current_period=False))


def list_periods(session: Session, year: Optional[int] = None, status: Optional[str] = None) -> Sequence[Period]:
    stmt = select(Period)
    if year is not None:
        stmt = stmt.where(Period.year == year)
    if status:
        stmt = stmt.where(Period.status == status)
    return session.exec(stmt.order_by(Period.year.desc(), Period.bimester_number.desc())).all()


def get_period(session: Session, period_id: int) -> Period:
    period = session.get(Period, period_id)
    if not period:
        raise NotFound("Period not found", details={"period_id": period_id})
    return period


def get_current_period(session: Session) -> Optional[Period]:
    return session.exec(select(Period).where(Period.is_current_period == True)).first()  # noqa: E712


def create_period(session: Session, data: Dict[str, Any]) -> Period:
    values = normalize_payload_for_model(Period, data, protected={"status", "is_current_period"})
    _as_naive_utc(values)
    values["code"] = values["code"].strip()
    _validate_bimester(values)
    _validate_dates(values)
    _ensure_unique_code(session, values["code"])
    period = Period(**values, status=PeriodStatusEnum.planning, is_current_period=False)
    session.add(period)
    session.commit()
    session.refresh(period)
    return period


def update_period(session: Session, period_id: int, data: Dict[str, Any]) -> Period:
    period = get_period(session, period_id)
    values = normalize_payload_for_model(Period, data)
    _as_naive_utc(values)
    if "code" in values:
        values["code"] = values["code"].strip()
        _ensure_unique_code(session, values["code"], exclude_id=period.id)
    merged = {**period.model_dump(), **values}
    _validate_bimester(merged)
    _validate_dates(merged)
    if values.get("is_current_period"):
        _clear_current_flag(session, keep_id=period.id)
    apply_partial_update(period, values)
    session.add(period)
    session.commit()
    session.refresh(period)
    return period


def set_current_period(session: Session, period_id: int) -> Period:
    period = get_period(session, period_id)
    _clear_current_flag(session, keep_id=period.id)
    period.is_current_period = True
    session.add(period)
    session.commit()
    session.refresh(period)
    logger.info("Period %s (%s) marked as current", period.id, period.code)
    return period


def change_period_status(session: Session, period_id: int, status: PeriodStatusEnum) -> Period:
    period = get_period(session, period_id)
    period.status = PeriodStatusEnum(status)
    session.add(period)
    session.commit()
    session.refresh(period)
    return period


def delete_period(session: Session, period_id: int) -> None:
    period = get_period(session, period_id)
    sections = session.exec(select(func.count()).select_from(Section).where(Section.period_id == period_id)).one()
    if sections:
        raise InUse("Cannot delete period with existing sections", details={"sections": sections})
    classes = session.exec(select(func.count()).select_from(CourseClass).where(CourseClass.period_id == period_id)).one()
    if classes:
        raise InUse("Cannot delete period with existing classes", details={"classes": classes})
    session.delete(period)
    session.commit()
