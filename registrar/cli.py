from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from sqlmodel import Session

from . import db
from .config import configure_logging
from .errors import RegistrarError
from .services.credits import recompute_all_program_credits, recompute_program_credits
from .services.importer import ClassEnrollmentImporter, ImportReport
from .services.spreadsheets import SpreadsheetError, dump_jsonl, load_records, read_excel_records
from .services.users import find_by_email

APP = typer.Typer(add_completion=False, help="Herramientas de línea de comandos del registro académico.")


def _print_report(report: ImportReport) -> None:
    typer.echo(f"Clases procesadas: {report.classes_processed}")
    typer.echo(f"  creadas: {report.classes_created}  existentes: {report.classes_already_existed}")
    typer.echo(f"Inscripciones creadas: {report.enrollments_created}  actualizadas: {report.enrollments_updated}")
    for warning in report.warnings:
        typer.secho(f"  aviso: {warning}", fg=typer.colors.YELLOW)
    for error in report.errors:
        prefix = f"[{error.type.value}]"
        if error.line is not None:
            prefix += f" línea {error.line}"
        typer.secho(f"  {prefix} {error.message}", fg=typer.colors.RED)


@APP.command("import-classes")
def import_classes(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help=".jsonl, .json o .xlsx"),
    actor: Optional[str] = typer.Option(None, "--actor", help="Email del usuario que ejecuta la importación."),
    report_out: Optional[Path] = typer.Option(None, "--report-out", help="Guardar el reporte en JSON."),
) -> None:
    """Import class enrollment records and print the reconciliation report."""
    configure_logging()
    db.init_db()
    try:
        records = load_records(path)
    except SpreadsheetError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    with Session(db.engine) as session:
        actor_id = None
        if actor:
            user = find_by_email(session, actor)
            if not user:
                typer.secho(f"Usuario no encontrado: {actor}", fg=typer.colors.RED)
                raise typer.Exit(code=1)
            actor_id = user.id
        report = ClassEnrollmentImporter(session, actor_id=actor_id, source=str(path)).run(records)

    _print_report(report)
    if report_out:
        report_out.write_text(
            json.dumps(report.model_dump(mode="json", by_alias=True), ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        typer.echo(f"Reporte guardado en {report_out}")
    if report.errors:
        raise typer.Exit(code=2)


@APP.command("excel-to-jsonl")
def excel_to_jsonl(
    xlsx: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    out: Path = typer.Argument(...),
) -> None:
    """Group spreadsheet rows by class and write one JSON record per line."""
    configure_logging()
    try:
        records = read_excel_records(xlsx)
    except SpreadsheetError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    out.write_text(dump_jsonl(records), encoding="utf-8")
    typer.secho(f"{len(records)} clase(s) escritas en {out}", fg=typer.colors.GREEN)


@APP.command("recompute-credits")
def recompute_credits(
    program_id: Optional[int] = typer.Option(None, "--program-id", help="Solo este programa."),
) -> None:
    """Recalculate program credit totals synchronously."""
    configure_logging()
    db.init_db()
    with Session(db.engine) as session:
        try:
            if program_id is not None:
                total = recompute_program_credits(session, program_id)
                session.commit()
                typer.echo(f"Programa {program_id}: {total} créditos")
                return
            program_ids = recompute_all_program_credits(session)
            session.commit()
        except RegistrarError as exc:
            typer.secho(exc.message, fg=typer.colors.RED)
            raise typer.Exit(code=1)
    typer.echo(f"Créditos recalculados para {len(program_ids)} programa(s)")


if __name__ == "__main__":
    APP()
