"""Summaries of checklist progress and offline sync state."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .models import ChecklistResult, CheckpointStatus, Job, PendingSubmission
from .offline import SyncState


@dataclass(slots=True)
class Report:
    title: str
    summary_lines: List[str]

    def render_text(self) -> str:
        return "\n".join([self.title, "-" * len(self.title), *self.summary_lines])


def checklist_report(code: str, results: Iterable[ChecklistResult], *, name: Optional[str] = None) -> Report:
    results = list(results)
    title = f"{code} {name}".strip() if name else code
    if not results:
        return Report(title=title, summary_lines=["Ingen sjekkpunkter."])
    counts = Counter(result.status for result in results)
    completed = len(results) - counts[CheckpointStatus.NOT_ASSESSED]
    lines = [f"{completed} av {len(results)} sjekkpunkter fullført"]
    if counts[CheckpointStatus.DEVIATION]:
        lines.append(f"{counts[CheckpointStatus.DEVIATION]} avvik registrert")
    for result in results:
        if result.status is CheckpointStatus.DEVIATION:
            detail = f": {result.comment}" if result.comment else ""
            lines.append(f"- AVVIK {result.text}{detail}")
    measured = [result for result in results if result.value]
    for result in measured:
        lines.append(f"- {result.text}: {result.value}")
    return Report(title=title, summary_lines=lines)


def sync_status_text(state: SyncState, *, online: bool) -> str:
    parts: List[str] = []
    if not online:
        parts.append("Frakoblet - endringer lagres lokalt")
    if state.is_syncing:
        parts.append("Synkroniserer...")
    if state.pending_count:
        parts.append(f"{state.pending_count} venter på synkronisering")
    elif online and not state.is_syncing:
        parts.append("Alt er synkronisert")
    if state.last_sync_at is not None:
        parts.append(f"sist synkronisert {state.last_sync_at:%Y-%m-%d %H:%M}")
    return " | ".join(parts)


def queue_report(pending: Iterable[PendingSubmission]) -> Report:
    rows = list(pending)
    title = "Ventende innsendinger"
    if not rows:
        return Report(title=title, summary_lines=["Køen er tom."])
    lines = []
    for row in rows:
        line = f"#{row.id} {row.code} ({row.performed_by}) lagt i kø {row.queued_at:%Y-%m-%d %H:%M}"
        if row.attempts:
            line += f", {row.attempts} forsøk"
        if row.last_error:
            line += f", siste feil: {row.last_error}"
        lines.append(line)
    return Report(title=title, summary_lines=lines)


def jobs_report(jobs: Iterable[Job]) -> Report:
    rows = list(jobs)
    title = "Dagens oppgaver"
    if not rows:
        return Report(title=title, summary_lines=["Ingen tildelte jobber."])
    lines = []
    for job in rows:
        line = f"#{job.id} [{job.status.value}] {job.title} ({job.type.value})"
        if job.due is not None:
            line += f", frist {job.due:%Y-%m-%d}"
        if job.tasks:
            line += f", {len(job.tasks) - len(job.open_tasks)}/{len(job.tasks)} oppgaver utført"
        lines.append(line)
        for task in job.tasks:
            value = f" = {task.measured_value}" if task.measured_value else ""
            lines.append(f"  - #{task.id} [{task.status.value}] {task.title}{value}")
    return Report(title=title, summary_lines=lines)
