"""FieldScan command line: recognition, checklists and the offline queue."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from dataclasses import replace
from pathlib import Path
from typing import Iterable, List, Optional

from fieldscan.codes import CodeMapping, find_by_code
from fieldscan.config import Settings
from fieldscan.connectivity import ConnectionInfo
from fieldscan.exceptions import ChecklistUnavailableError, FieldScanError, ReauthenticationRequired
from fieldscan.models import (
    ClassificationLabel,
    CheckpointStatus,
    EquipmentCategory,
    EquipmentMatch,
    Job,
    JobTask,
    Severity,
    SubmitOutcome,
)
from fieldscan.ocr import load_default_recognizer
from fieldscan.offline import SyncState
from fieldscan.pipeline import FieldScan
from fieldscan.reporting import checklist_report, jobs_report, queue_report
from fieldscan.tags import parse_tag_code
from fieldscan.ui import ChecklistCard, build_detection_cards
from fieldscan.utils import configure_logging

try:
    from PIL import Image  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    Image = None  # type: ignore

logger = logging.getLogger(__name__)


def render_matches(matches: Iterable[EquipmentMatch]) -> None:
    cards = build_detection_cards(matches)
    if not cards:
        print("Ingen utstyr gjenkjent.")
        return
    for card in cards:
        print(card.render_text())


def parse_label(raw: str) -> ClassificationLabel:
    identifier, _, confidence = raw.rpartition(":")
    if not identifier:
        raise argparse.ArgumentTypeError(f"Expected IDENTIFIER:CONFIDENCE, got {raw!r}")
    try:
        return ClassificationLabel(identifier=identifier, confidence=float(confidence))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid confidence in {raw!r}") from exc


def parse_assignment(raw: str) -> tuple[int, str]:
    checkpoint_id, sep, value = raw.partition("=")
    try:
        return int(checkpoint_id), value if sep else ""
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected ID=VALUE, got {raw!r}") from exc


def match_for_code(raw: str) -> EquipmentMatch:
    mapping = parse_tag_code(raw.upper()) or find_by_code(raw)
    if mapping is None:
        mapping = CodeMapping(code=raw.upper(), name=raw.upper(), category=EquipmentCategory.OTHER)
    return EquipmentMatch(code=mapping.code, name=mapping.name, category=mapping.category, confidence=1.0)


def cmd_classify(app: FieldScan, args: argparse.Namespace) -> int:
    render_matches(app.classify_text(args.text))
    return 0


def cmd_voice(app: FieldScan, args: argparse.Namespace) -> int:
    analysis = app.voice.analyze(args.transcript)
    print(f"utstyr: {', '.join(analysis.equipment_mentions) or '-'}")
    print(f"status: {', '.join(analysis.status_indicators) or '-'}")
    print(f"målinger: {', '.join(str(value) for value in analysis.measurements) or '-'}")
    action = analysis.suggested_action.value if analysis.suggested_action else "-"
    print(f"forslag: {action}")
    for line in app.voice.suggestions(args.transcript):
        print(f"  - {line}")
    return 0


def cmd_image(app: FieldScan, args: argparse.Namespace) -> int:
    path: Path = args.path
    if not path.exists():
        sys.stderr.write(f"Image not found: {path}\n")
        return 1
    image = None
    if Image is not None and app.scanner is not None:
        image = Image.open(path)
    matches = app.analyze_image(image, labels=args.label, image_bytes=path.read_bytes())
    render_matches(matches)
    return 0


def cmd_checklist(app: FieldScan, args: argparse.Namespace) -> int:
    match = match_for_code(args.code)
    try:
        session, response = app.open_checklist(
            match, context=args.context, location=args.location, refresh=args.refresh
        )
    except ChecklistUnavailableError as exc:
        sys.stderr.write(f"{exc}\n")
        return 1
    try:
        for checkpoint_id in args.ok:
            session.set_status(checkpoint_id, CheckpointStatus.OK)
        for checkpoint_id, comment in args.deviation:
            session.set_status(checkpoint_id, CheckpointStatus.DEVIATION)
            session.set_comment(checkpoint_id, comment)
        for checkpoint_id, value in args.value:
            session.set_value(checkpoint_id, value)
    except KeyError as exc:
        sys.stderr.write(f"{exc.args[0]}\n")
        return 1
    for transcript in args.voice:
        _, target = app.apply_voice(session, transcript)
        if target is None:
            print(f"Ingen sjekkpunkt å oppdatere for: {transcript}")
    print(ChecklistCard(session=session, response=response, hints=app.hints_for(session)).render_text())
    if not args.submit:
        return 0
    if not session.can_submit:
        sys.stderr.write("Minst ett sjekkpunkt må vurderes før innsending.\n")
        return 1
    try:
        outcome = app.submit(session, notes=args.notes, performed_by=args.performed_by)
    except ReauthenticationRequired as exc:
        sys.stderr.write(f"{exc}. Innsendingen er lagt i kø.\n")
        return 2
    print()
    print(checklist_report(match.code, session.results.values(), name=match.name).render_text())
    print(f"\nResultat: {'sendt' if outcome is SubmitOutcome.SENT else 'lagt i kø'}")
    print(app.sync_status_text())
    return 0


def cmd_pending(app: FieldScan, args: argparse.Namespace) -> int:
    if args.discard is not None:
        if not app.offline.discard(args.discard):
            sys.stderr.write(f"No queued submission #{args.discard}\n")
            return 1
    print(queue_report(app.offline.pending()).render_text())
    return 0


def cmd_sync(app: FieldScan, args: argparse.Namespace) -> int:
    report = app.sync()
    if report.skipped:
        print("Synkronisering pågår allerede.")
        return 0
    print(f"Sendt: {len(report.sent)}, feilet: {len(report.failed)}, gjenstår: {report.remaining}")
    return 0 if not report.failed else 1


def cmd_monitor(app: FieldScan, args: argparse.Namespace) -> int:
    def on_connection(info: ConnectionInfo) -> None:
        stamp = time.strftime("%H:%M:%S")
        print(f"[{stamp}] {info.status.value} ({info.transport.value})")

    def on_sync(state: SyncState) -> None:
        print(f"  {app.sync_status_text()}")

    app.monitor.add_listener(on_connection)
    app.offline.add_listener(on_sync)
    app.monitor.start()
    app.drain_if_pending()
    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        print("\nStopped monitoring.")
    return 0


def find_job(jobs: Iterable[Job], job_id: int) -> Optional[Job]:
    return next((job for job in jobs if job.id == job_id), None)


def find_task(jobs: Iterable[Job], task_id: int) -> Optional[JobTask]:
    return next((task for job in jobs for task in job.tasks if task.id == task_id), None)


def cmd_jobs(app: FieldScan, args: argparse.Namespace) -> int:
    jobs = app.my_jobs()
    if args.job is None:
        print(jobs_report(jobs).render_text())
        return 0
    job = find_job(jobs, args.job)
    if job is None:
        sys.stderr.write(f"No assigned job #{args.job}\n")
        return 1
    if args.action == "auto-fill":
        for task in app.api.auto_fill_tasks(job.id):
            print(f"#{task.id} {task.title}: {task.measured_value or task.auto_value}")
        return 0
    if args.action is not None:
        try:
            job = app.run_job_action(job, args.action)
        except ValueError as exc:
            sys.stderr.write(f"{exc}\n")
            return 1
    print(jobs_report([job]).render_text())
    return 0


def cmd_task(app: FieldScan, args: argparse.Namespace) -> int:
    task = find_task(app.my_jobs(), args.task_id)
    if task is None:
        sys.stderr.write(f"No assigned task #{args.task_id}\n")
        return 1
    updated = app.complete_task_by_voice(task, args.transcript)
    if updated is None:
        print(f"Ingen status funnet i: {args.transcript}")
        return 1
    value = f" = {updated.measured_value}" if updated.measured_value else ""
    print(f"#{updated.id} [{updated.status.value}] {updated.title}{value}")
    return 0


def cmd_deviation(app: FieldScan, args: argparse.Namespace) -> int:
    photo = args.photo.read_bytes() if args.photo else None
    task = app.report_deviation(args.task_id, args.description, severity=Severity(args.severity), photo=photo)
    print(f"Avvik registrert for oppgave #{task.id} ({args.severity})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="FieldScan equipment inspection assistant")
    parser.add_argument("--api-url", help="Backend base URL (FIELDSCAN_API_BASE_URL)")
    parser.add_argument("--db", type=Path, help="SQLite database path (FIELDSCAN_DB_PATH)")
    parser.add_argument("--log-level", help="Logging level (FIELDSCAN_LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command", required=True)

    classify = sub.add_parser("classify", help="Classify recognized label text")
    classify.add_argument("text", nargs="+")
    classify.set_defaults(handler=cmd_classify, needs_start=False)

    voice = sub.add_parser("voice", help="Analyze a transcribed utterance")
    voice.add_argument("transcript")
    voice.set_defaults(handler=cmd_voice, needs_start=False)

    image = sub.add_parser("image", help="Recognize equipment in a photo")
    image.add_argument("path", type=Path)
    image.add_argument(
        "--label",
        type=parse_label,
        action="append",
        default=[],
        help="Image classification label as IDENTIFIER:CONFIDENCE",
    )
    image.set_defaults(handler=cmd_image, needs_start=True)

    checklist = sub.add_parser("checklist", help="Fetch, fill in and submit a checklist")
    checklist.add_argument("code", help="Component code or tag, e.g. PU or =360.01-PU001")
    checklist.add_argument("--context")
    checklist.add_argument("--location")
    checklist.add_argument("--refresh", action="store_true", help="Bypass the local cache")
    checklist.add_argument("--ok", type=int, action="append", default=[], metavar="ID")
    checklist.add_argument("--deviation", type=parse_assignment, action="append", default=[], metavar="ID=COMMENT")
    checklist.add_argument("--value", type=parse_assignment, action="append", default=[], metavar="ID=VALUE")
    checklist.add_argument("--voice", action="append", default=[], metavar="TRANSCRIPT")
    checklist.add_argument("--notes")
    checklist.add_argument("--performed-by")
    checklist.add_argument("--submit", action="store_true")
    checklist.set_defaults(handler=cmd_checklist, needs_start=True)

    pending = sub.add_parser("pending", help="List queued submissions")
    pending.add_argument("--discard", type=int, metavar="ID", help="Remove a queued submission without sending it")
    pending.set_defaults(handler=cmd_pending, needs_start=False)

    sync = sub.add_parser("sync", help="Send queued submissions now")
    sync.set_defaults(handler=cmd_sync, needs_start=True)

    monitor = sub.add_parser("monitor", help="Watch connectivity and drain the queue when it returns")
    monitor.add_argument("--interval", type=float, help="Probe interval in seconds")
    monitor.set_defaults(handler=cmd_monitor, needs_start=True)

    jobs = sub.add_parser("jobs", help="List assigned maintenance jobs or change their state")
    jobs.add_argument("--job", type=int, metavar="ID")
    jobs.add_argument("--action", choices=["start", "pause", "resume", "complete", "auto-fill"])
    jobs.set_defaults(handler=cmd_jobs, needs_start=True)

    task = sub.add_parser("task", help="Complete a job task from a spoken status")
    task.add_argument("task_id", type=int)
    task.add_argument("transcript")
    task.set_defaults(handler=cmd_task, needs_start=True)

    deviation = sub.add_parser("deviation", help="Register a deviation on a job task")
    deviation.add_argument("task_id", type=int)
    deviation.add_argument("description")
    deviation.add_argument("--severity", choices=[s.value for s in Severity], default=Severity.MEDIUM.value)
    deviation.add_argument("--photo", type=Path)
    deviation.set_defaults(handler=cmd_deviation, needs_start=True)
    return parser


def load_settings(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env()
    overrides = {}
    if args.api_url:
        overrides["api_base_url"] = args.api_url.rstrip("/")
    if args.db:
        overrides["db_path"] = args.db
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()
    if getattr(args, "interval", None):
        overrides["connectivity_interval"] = max(1.0, args.interval)
    return replace(settings, **overrides) if overrides else settings


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args)
    configure_logging(settings.log_level, log_file=settings.log_file)
    recognizer = load_default_recognizer() if args.command == "image" else None
    app = FieldScan(settings, recognizer=recognizer)
    try:
        if args.needs_start:
            app.start(background=False)
        return args.handler(app, args)
    except FieldScanError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        app.close()


if __name__ == "__main__":
    sys.exit(main())
