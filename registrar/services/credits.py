"""Program credit aggregation.

``Program.total_credits`` is derived: the sum of credits of active courses
linked through active associations. Mutations that can change it call
``defer_credit_recompute``; the program ids ride on the session and are handed
to ``credit_queue`` only once the triggering transaction commits.
"""

import logging
from typing import Iterable, List

from sqlalchemy import event, func
from sqlmodel import Session, select

from .. import db
from ..config import settings
from ..errors import NotFound
from ..models import Course, Program, ProgramCourse
from .task_queue import DeferredTaskQueue


logger = logging.getLogger(__name__)

_PENDING_KEY = "pending_credit_programs"

credit_queue = DeferredTaskQueue(
    name="credits",
    max_workers=settings.credit_queue_workers,
    enabled=settings.credit_queue_enabled,
)


def sum_active_credits(session: Session, program_id: int) -> int:
    stmt = (
        select(func.coalesce(func.sum(Course.credits), 0))
        .select_from(ProgramCourse)
        .join(Course, Course.id == ProgramCourse.course_id)
        .where(
            ProgramCourse.program_id == program_id,
            ProgramCourse.is_active == True,  # noqa: E712
            Course.is_active == True,  # noqa: E712
        )
    )
    return int(session.exec(stmt).one())


def recompute_program_credits(session: Session, program_id: int) -> int:
    """Overwrite the program total with a fresh sum. Safe to repeat."""
    program = session.get(Program, program_id)
    if not program:
        raise NotFound("Program not found", details={"program_id": program_id})
    total = sum_active_credits(session, program_id)
    if program.total_credits != total:
        logger.info("Program %s credits %s -> %s", program_id, program.total_credits, total)
    program.total_credits = total
    session.add(program)
    session.flush()
    return total


def recompute_all_program_credits(session: Session) -> List[int]:
    program_ids = session.exec(select(Program.id)).all()
    for program_id in program_ids:
        recompute_program_credits(session, program_id)
    return list(program_ids)


def defer_credit_recompute(session: Session, program_id: int) -> None:
    session.info.setdefault(_PENDING_KEY, set()).add(program_id)


def defer_credit_recompute_many(session: Session, program_ids: Iterable[int]) -> None:
    for program_id in program_ids:
        defer_credit_recompute(session, program_id)


def programs_linked_to_course(session: Session, course_id: int) -> List[int]:
    rows = session.exec(select(ProgramCourse.program_id).where(ProgramCourse.course_id == course_id)).all()
    return sorted(set(rows))


def _run_recompute_job(program_id: int) -> None:
    with Session(db.engine) as session:
        try:
            recompute_program_credits(session, program_id)
        except NotFound:
            # El programa se eliminó antes de que corriera la tarea
            logger.info("Skipping credit recompute for missing program %s", program_id)
            return
        session.commit()


def schedule_recompute(program_id: int) -> bool:
    return credit_queue.enqueue(
        f"recompute-credits:{program_id}",
        lambda: _run_recompute_job(program_id),
    )


@event.listens_for(Session, "after_commit")
def _enqueue_pending_recomputes(session) -> None:
    pending = session.info.pop(_PENDING_KEY, None)
    if not pending:
        return
    for program_id in sorted(pending):
        schedule_recompute(program_id)
    logger.info("Scheduled credit recompute for programs %s", sorted(pending))


@event.listens_for(Session, "after_rollback")
def _discard_pending_recomputes(session) -> None:
    session.info.pop(_PENDING_KEY, None)
