"""
Schedule Parser — MS Project XML (MSPDI) import into the activity graph.

Pipeline:
    1. Guards          size cap, DOCTYPE/ENTITY rejection, XML well-formedness,
                       programme exists, task list present, task-count cap
    2. Extract         Tasks/Task → TaskRecord, Links/Link + PredecessorLink → LinkRecord
    3. Upsert          leaves first, then summaries (external_id is the key);
                       activities missing from the file are deleted
    4. Hierarchy       outline-number prefix index, O(n log n)
    5. Links           rebuilt from scratch; dangling / self / duplicate dropped
    6. Milestones      upserted from milestone-flagged leaves, is_key_date kept

Steps 3–6 run in one transaction. Fatal problems raise ParseError
internally; ``parse`` turns every failure into ``ParseResult(success=False)``
after a rollback. Task-level anomalies only add warnings.

Usage:
    parser = ScheduleParser.from_config(current_app.config)
    result = parser.parse(xml_bytes, programme_id)
"""

from __future__ import annotations

import logging
import math
import re
import time
import xml.etree.ElementTree as ET
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from sqlalchemy import delete, select, update

from contractflow.core.exceptions import ParseError
from contractflow.models import db
from contractflow.models.programme import (
    RELATIONSHIP_TYPES,
    Activity,
    ActivityRelationship,
    Programme,
    ProgrammeMilestone,
)
from contractflow.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_BYTES = 20 * 1024 * 1024
DEFAULT_MAX_TASKS = 50_000
DEFAULT_TIMEOUT_SECONDS = 120.0

HOURS_PER_DAY = 8
# MSPDI LinkLag is expressed in tenths of a minute.
LINK_LAG_UNITS_PER_DAY = HOURS_PER_DAY * 60 * 10
# Day counts and outline depths beyond these are treated as corrupt values.
MAX_DAY_COUNT = 100_000
MAX_OUTLINE_LEVEL = 100

_DTD_RE = re.compile(rb"<!\s*(DOCTYPE|ENTITY)", re.IGNORECASE)
_ISO_DURATION_RE = re.compile(
    r"^(-)?P(?:(\d+(?:\.\d+)?)D)?"
    r"(?:T(?:(\d+(?:\.\d+)?)H)?(?:(\d+(?:\.\d+)?)M)?(?:(\d+(?:\.\d+)?)S)?)?$"
)

_LINK_TYPE_CODES = {"0": "FF", "1": "FS", "2": "SF", "3": "SS"}
_LINK_TYPE_WORDS = {
    "FINISHTOSTART": "FS",
    "STARTTOSTART": "SS",
    "FINISHTOFINISH": "FF",
    "STARTTOFINISH": "SF",
}

NOT_IMPLEMENTED_TYPES = {"msp", "mpp", "xer"}


# ═════════════════════════════════════════════════════════════════════════════
# Result & intermediate records
# ═════════════════════════════════════════════════════════════════════════════


@dataclass
class ParseResult:
    success: bool
    activity_count: int = 0
    milestone_count: int = 0
    relationship_count: int = 0
    dropped_links: int = 0
    unresolved_parents: int = 0
    warnings: list[str] = field(default_factory=list)
    error_message: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def failure(cls, message: str, warnings=None) -> "ParseResult":
        return cls(success=False, warnings=list(warnings or []), error_message=message)


@dataclass
class TaskRecord:
    position: int
    external_id: str
    uid: str | None = None
    name: str = ""
    notes: str = ""
    start: datetime | None = None
    finish: datetime | None = None
    duration: int = 0
    percent_complete: int = 0
    critical: bool = False
    total_float: int | None = None
    wbs: str = ""
    outline_number: str | None = None
    outline_level: int | None = None
    milestone: bool = False
    summary: bool = False


@dataclass
class LinkRecord:
    from_id: str | None
    to_id: str | None
    type: str = "FS"
    lag: int = 0
    source: str = "Link"


# ═════════════════════════════════════════════════════════════════════════════
# Field coercion
# ═════════════════════════════════════════════════════════════════════════════


def _strip_namespaces(root):
    for el in root.iter():
        if isinstance(el.tag, str) and "}" in el.tag:
            el.tag = el.tag.split("}", 1)[1]


def _text(el, name):
    child = el.find(name)
    if child is None or child.text is None:
        return None
    value = child.text.strip()
    return value or None


def parse_bool(raw, warnings=None, label="value"):
    if raw is None:
        return False
    value = raw.strip().lower()
    if value in ("true", "1"):
        return True
    if value in ("false", "0"):
        return False
    if warnings is not None:
        warnings.append(f"Unrecognised boolean {raw!r} for {label}; treated as false")
    return False


def parse_finite(raw):
    """float(raw), raising ValueError for inf, nan and out-of-range text."""
    value = float(raw)
    if not math.isfinite(value):
        raise ValueError(f"Non-finite number: {raw!r}")
    return value


def _day_count(value, raw):
    days = int(round(value))
    if abs(days) > MAX_DAY_COUNT:
        raise ValueError(f"Day count out of range: {raw!r}")
    return days


def parse_duration_days(raw):
    """
    Convert an integer day count or ISO-8601 duration to whole working days.

    ``PT16H0M0S`` → 2 (8 working hours per day). A leading ``-`` is kept,
    for negative lags. Raises ValueError for anything else, including
    non-finite values and day counts beyond MAX_DAY_COUNT.
    """
    value = raw.strip()
    if re.fullmatch(r"-?\d+(?:\.\d+)?", value):
        return _day_count(parse_finite(value), raw)
    match = _ISO_DURATION_RE.match(value.upper())
    if not match or value.upper() in ("P", "-P", "PT", "-PT"):
        raise ValueError(f"Invalid duration: {raw!r}")
    sign, days, hours, minutes, seconds = match.groups()
    total_hours = (
        parse_finite(days or 0) * HOURS_PER_DAY
        + parse_finite(hours or 0)
        + parse_finite(minutes or 0) / 60
        + parse_finite(seconds or 0) / 3600
    )
    if not math.isfinite(total_hours):
        raise ValueError(f"Invalid duration: {raw!r}")
    result = _day_count(total_hours / HOURS_PER_DAY, raw)
    return -result if sign else result


def parse_link_type(raw, warnings=None):
    if raw is None or not raw.strip():
        return "FS"
    value = raw.strip().upper()
    if value in RELATIONSHIP_TYPES:
        return value
    if value in _LINK_TYPE_CODES:
        return _LINK_TYPE_CODES[value]
    word = re.sub(r"[^A-Z]", "", value)
    if word in _LINK_TYPE_WORDS:
        return _LINK_TYPE_WORDS[word]
    if warnings is not None:
        warnings.append(f"Unknown link type {raw!r}; defaulted to FS")
    return "FS"


# ═════════════════════════════════════════════════════════════════════════════
# Hierarchy reconstruction
# ═════════════════════════════════════════════════════════════════════════════


def resolve_hierarchy(records):
    """
    Map child external_id → parent external_id from outline numbers.

    Tasks are visited by ascending outline level; each one looks up its
    dot-prefixes (longest first) in an index of tasks already seen. The
    first prefix present decides: it is the parent only if exactly one
    task carries it and that task sits at a strictly lower level.

    Returns:
        (parents, unresolved, messages)
    """
    ordered = sorted(
        (r for r in records if r.outline_number),
        key=lambda r: (r.outline_level or 0, r.position),
    )
    index = {}
    parents = {}
    unresolved = 0
    messages = []

    for rec in ordered:
        parts = rec.outline_number.split(".")
        if len(parts) > 1:
            nearest = None
            for k in range(len(parts) - 1, 0, -1):
                hits = index.get(".".join(parts[:k]))
                if hits:
                    nearest = hits
                    break
            if nearest is None:
                unresolved += 1
                messages.append(
                    f"Task {rec.external_id} ({rec.outline_number}): no parent outline number found"
                )
            elif len(nearest) > 1:
                unresolved += 1
                messages.append(
                    f"Task {rec.external_id} ({rec.outline_number}): parent outline number "
                    f"{nearest[0].outline_number} is ambiguous"
                )
            elif (nearest[0].outline_level or 0) >= (rec.outline_level or 0):
                unresolved += 1
                messages.append(
                    f"Task {rec.external_id} ({rec.outline_number}): nearest prefix "
                    f"{nearest[0].outline_number} is not at a lower outline level"
                )
            else:
                parents[rec.external_id] = nearest[0].external_id
        index.setdefault(rec.outline_number, []).append(rec)

    return parents, unresolved, messages


# ═════════════════════════════════════════════════════════════════════════════
# Parser
# ═════════════════════════════════════════════════════════════════════════════


class ScheduleParser:
    """Imports one MSPDI document into a Programme's activity graph."""

    def __init__(self, session=None, *, max_file_bytes=DEFAULT_MAX_FILE_BYTES,
                 max_tasks=DEFAULT_MAX_TASKS, timeout_seconds=DEFAULT_TIMEOUT_SECONDS,
                 clock=time.monotonic):
        self.session = session or db.session
        self.max_file_bytes = max_file_bytes
        self.max_tasks = max_tasks
        self.timeout_seconds = timeout_seconds
        self.clock = clock

    @classmethod
    def from_config(cls, config, session=None) -> "ScheduleParser":
        return cls(
            session,
            max_file_bytes=int(config.get("PROGRAMME_MAX_FILE_BYTES", DEFAULT_MAX_FILE_BYTES)),
            max_tasks=int(config.get("PROGRAMME_MAX_TASKS", DEFAULT_MAX_TASKS)),
            timeout_seconds=float(
                config.get("PROGRAMME_PARSE_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)
            ),
        )

    # ── Public API ───────────────────────────────────────────────────────

    def parse(self, file_content, programme_id) -> ParseResult:
        warnings = []
        started = self.clock()
        try:
            result = self._import(file_content, programme_id, warnings, started)
        except ParseError as exc:
            self.session.rollback()
            logger.warning(
                "Programme %s import failed: %s", programme_id, exc,
                extra={"programme_id": programme_id},
            )
            return ParseResult.failure(str(exc), warnings)
        except Exception as exc:
            self.session.rollback()
            logger.exception(
                "Programme %s import aborted", programme_id,
                extra={"programme_id": programme_id},
            )
            return ParseResult.failure(f"Import aborted: {exc.__class__.__name__}: {exc}", warnings)

        logger.info(
            "Programme %s imported: %d activities, %d relationships, %d milestones "
            "(%d links dropped, %d parents unresolved)",
            programme_id, result.activity_count, result.relationship_count,
            result.milestone_count, result.dropped_links, result.unresolved_parents,
            extra={"programme_id": programme_id},
        )
        return result

    # ── Phases ───────────────────────────────────────────────────────────

    def _check_deadline(self, started, phase):
        if self.clock() - started > self.timeout_seconds:
            raise ParseError(
                f"Import exceeded {self.timeout_seconds:g}s time limit during {phase}"
            )

    def _load_root(self, file_content):
        data = file_content.encode("utf-8") if isinstance(file_content, str) else file_content
        if not data:
            raise ParseError("Empty file")
        if len(data) > self.max_file_bytes:
            raise ParseError(
                f"File too large: {len(data)} bytes (limit {self.max_file_bytes})"
            )
        if _DTD_RE.search(data):
            raise ParseError("DOCTYPE and ENTITY declarations are not allowed")
        try:
            root = ET.fromstring(data)
        except ET.ParseError as exc:
            raise ParseError(f"Invalid XML: {exc}")
        _strip_namespaces(root)
        if root.tag != "Project":
            raise ParseError(f"Invalid XML structure: root element is {root.tag}, expected Project")
        return root

    def _import(self, file_content, programme_id, warnings, started):
        root = self._load_root(file_content)

        programme = self.session.get(Programme, programme_id)
        if programme is None:
            raise ParseError(f"Programme {programme_id} not found")

        task_elements = root.findall("Tasks/Task")
        if not task_elements:
            raise ParseError("No tasks found in file")
        if len(task_elements) > self.max_tasks:
            raise ParseError(
                f"Too many tasks: {len(task_elements)} (limit {self.max_tasks})"
            )

        records, links = self._extract(root, task_elements, warnings)
        if not records:
            raise ParseError("No usable tasks found in file (every task lacks an ID)")
        self._check_deadline(started, "extraction")

        activities = self._upsert_activities(programme, records)
        self._check_deadline(started, "activity upsert")

        parents, unresolved, messages = resolve_hierarchy(records)
        for message in messages:
            logger.debug(message, extra={"programme_id": programme_id})
        warnings.extend(messages)
        for child_ext, parent_ext in parents.items():
            activities[child_ext].parent_id = activities[parent_ext].id
        self._check_deadline(started, "hierarchy")

        relationship_count, dropped = self._rebuild_links(programme, activities, links, warnings)
        self._check_deadline(started, "relationships")

        milestone_count = self._upsert_milestones(programme, records, activities)

        finish_raw = _text(root, "FinishDate")
        if finish_raw:
            finish = parse_datetime(finish_raw)
            if finish is None:
                warnings.append(f"Unparseable project FinishDate {finish_raw!r}")
            else:
                programme.planned_completion_date = finish
        programme.file_type = "xml"
        programme.last_imported_at = datetime.now(timezone.utc)

        self._check_deadline(started, "milestones")
        self.session.commit()

        return ParseResult(
            success=True,
            activity_count=len(activities),
            milestone_count=milestone_count,
            relationship_count=relationship_count,
            dropped_links=dropped,
            unresolved_parents=unresolved,
            warnings=warnings,
        )

    def _extract(self, root, task_elements, warnings):
        records = []
        seen = set()
        links = []

        for position, el in enumerate(task_elements):
            ext = _text(el, "ID")
            if ext is None:
                warnings.append(f"Task at position {position} has no ID; skipped")
                continue
            if ext in seen:
                warnings.append(f"Duplicate task ID {ext}; later occurrence skipped")
                continue
            seen.add(ext)
            rec = TaskRecord(position=position, external_id=ext)
            rec.uid = _text(el, "UID")
            rec.name = _text(el, "Name") or ""
            rec.notes = _text(el, "Notes") or ""
            rec.wbs = _text(el, "WBS") or ""
            rec.critical = parse_bool(_text(el, "Critical"), warnings, f"task {ext} Critical")
            rec.milestone = parse_bool(_text(el, "Milestone"), warnings, f"task {ext} Milestone")
            rec.summary = parse_bool(_text(el, "Summary"), warnings, f"task {ext} Summary")

            for tag, attr in (("Start", "start"), ("Finish", "finish")):
                raw = _text(el, tag)
                if raw is None:
                    continue
                value = parse_datetime(raw)
                if value is None:
                    warnings.append(f"Task {ext}: unparseable {tag} {raw!r}")
                setattr(rec, attr, value)

            raw = _text(el, "Duration")
            if raw is not None:
                try:
                    rec.duration = max(parse_duration_days(raw), 0)
                except ValueError:
                    warnings.append(f"Task {ext}: unparseable Duration {raw!r}")

            raw = _text(el, "TotalSlack")
            if raw is not None:
                try:
                    rec.total_float = parse_duration_days(raw)
                except ValueError:
                    warnings.append(f"Task {ext}: unparseable TotalSlack {raw!r}")

            raw = _text(el, "PercentComplete")
            if raw is not None:
                try:
                    rec.percent_complete = min(max(int(parse_finite(raw)), 0), 100)
                except ValueError:
                    warnings.append(f"Task {ext}: unparseable PercentComplete {raw!r}")

            rec.outline_number = _text(el, "OutlineNumber")
            raw = _text(el, "OutlineLevel")
            if raw is not None:
                try:
                    level = int(raw)
                    if not 0 <= level <= MAX_OUTLINE_LEVEL:
                        raise ValueError(raw)
                    rec.outline_level = level
                except ValueError:
                    warnings.append(f"Task {ext}: unparseable OutlineLevel {raw!r}")
            if rec.outline_level is None and rec.outline_number:
                rec.outline_level = len(rec.outline_number.split("."))

            for pl in el.findall("PredecessorLink"):
                lag_raw = _text(pl, "LinkLag")
                lag = 0
                if lag_raw is not None:
                    try:
                        lag = _day_count(parse_finite(lag_raw) / LINK_LAG_UNITS_PER_DAY, lag_raw)
                    except ValueError:
                        warnings.append(f"Task {ext}: unparseable LinkLag {lag_raw!r}")
                links.append(LinkRecord(
                    from_id=_text(pl, "PredecessorUID"),
                    to_id=ext,
                    type=parse_link_type(_text(pl, "Type"), warnings),
                    lag=lag,
                    source="PredecessorLink",
                ))
            records.append(rec)

        # PredecessorUID refers to UIDs; translate to task IDs.
        # Files without any UID fall back to treating the UID as the ID.
        uid_map = {r.uid: r.external_id for r in records if r.uid}
        if uid_map:
            for link in links:
                link.from_id = uid_map.get(link.from_id, f"UID {link.from_id}")

        for el in root.findall("Links/Link"):
            lag_raw = _text(el, "Lag")
            lag = 0
            if lag_raw is not None:
                try:
                    lag = parse_duration_days(lag_raw)
                except ValueError:
                    warnings.append(f"Link {_text(el, 'From')}→{_text(el, 'To')}: unparseable Lag {lag_raw!r}")
            links.append(LinkRecord(
                from_id=_text(el, "From"),
                to_id=_text(el, "To"),
                type=parse_link_type(_text(el, "Type"), warnings),
                lag=lag,
            ))

        return records, links

    def _upsert_activities(self, programme, records):
        session = self.session
        existing = {
            a.external_id: a
            for a in session.execute(
                select(Activity).where(Activity.programme_id == programme.id)
            ).scalars()
        }
        incoming = {r.external_id for r in records}
        removed_ids = [a.id for ext, a in existing.items() if ext not in incoming]

        session.execute(
            delete(ActivityRelationship).where(ActivityRelationship.programme_id == programme.id)
        )
        session.execute(
            update(Activity).where(Activity.programme_id == programme.id).values(parent_id=None)
        )
        if removed_ids:
            session.execute(
                delete(ProgrammeMilestone).where(ProgrammeMilestone.activity_id.in_(removed_ids))
            )
            session.execute(delete(Activity).where(Activity.id.in_(removed_ids)))
            logger.info(
                "Removed %d activities no longer in the programme file", len(removed_ids),
                extra={"programme_id": programme.id},
            )

        activities = {}
        leaves = [r for r in records if not r.summary]
        summaries = [r for r in records if r.summary]
        for batch in (leaves, summaries):
            for rec in batch:
                activity = existing.get(rec.external_id)
                if activity is None:
                    activity = Activity(programme_id=programme.id, external_id=rec.external_id)
                    session.add(activity)
                activity.name = rec.name
                activity.description = rec.notes
                activity.start_date = rec.start
                activity.end_date = rec.finish
                activity.duration = rec.duration
                activity.percent_complete = rec.percent_complete
                activity.is_critical = rec.critical
                activity.total_float = rec.total_float
                activity.wbs_code = rec.wbs
                activity.outline_number = rec.outline_number
                activity.outline_level = rec.outline_level
                activity.is_summary = rec.summary
                activity.milestone = rec.milestone
                activity.parent_id = None
                activities[rec.external_id] = activity
            session.flush()
        return activities

    def _rebuild_links(self, programme, activities, links, warnings):
        seen = set()
        created = 0
        dropped = 0
        for link in links:
            pred = activities.get(link.from_id)
            succ = activities.get(link.to_id)
            if pred is None or succ is None:
                dropped += 1
                missing = link.from_id if pred is None else link.to_id
                warnings.append(
                    f"{link.source} {link.from_id}→{link.to_id} dropped: task {missing} not found"
                )
                continue
            if pred.id == succ.id:
                dropped += 1
                warnings.append(f"{link.source} {link.from_id}→{link.to_id} dropped: self loop")
                continue
            key = (pred.id, succ.id, link.type)
            if key in seen:
                dropped += 1
                warnings.append(
                    f"{link.source} {link.from_id}→{link.to_id} ({link.type}) dropped: duplicate"
                )
                continue
            seen.add(key)
            self.session.add(ActivityRelationship(
                programme_id=programme.id,
                predecessor_id=pred.id,
                successor_id=succ.id,
                type=link.type,
                lag=link.lag,
            ))
            created += 1
        if dropped:
            logger.warning(
                "Dropped %d relationship(s) while importing programme %s", dropped, programme.id,
                extra={"programme_id": programme.id},
            )
        self.session.flush()
        return created, dropped

    def _upsert_milestones(self, programme, records, activities):
        session = self.session
        existing = {
            m.activity_id: m
            for m in session.execute(
                select(ProgrammeMilestone).where(ProgrammeMilestone.programme_id == programme.id)
            ).scalars()
        }
        kept = set()
        for rec in records:
            if not rec.milestone or rec.summary:
                continue
            activity = activities[rec.external_id]
            milestone = existing.get(activity.id)
            if milestone is None:
                milestone = ProgrammeMilestone(
                    programme_id=programme.id,
                    project_id=programme.project_id,
                    activity_id=activity.id,
                    is_key_date=False,
                )
                session.add(milestone)
            completed = rec.percent_complete == 100
            milestone.name = rec.name or f"Milestone {rec.external_id}"
            milestone.planned_date = rec.start or rec.finish
            milestone.actual_date = rec.finish if completed else None
            milestone.forecast_date = None if completed else rec.finish
            milestone.status = "Completed" if completed else "Not Started"
            milestone.affects_completion_date = rec.critical
            milestone.description = rec.notes
            kept.add(activity.id)

        stale = [m for activity_id, m in existing.items() if activity_id not in kept]
        for milestone in stale:
            session.delete(milestone)
        session.flush()
        return len(kept)


def parse_programme_file(file_content, file_type, programme_id, parser=None) -> ParseResult:
    """Dispatch an import by file type. Never raises."""
    kind = (file_type or "").strip().lower().lstrip(".")
    if kind == "xml":
        return (parser or ScheduleParser()).parse(file_content, programme_id)
    if kind in NOT_IMPLEMENTED_TYPES:
        logger.info("Rejected %s import for programme %s: not implemented", kind, programme_id,
                    extra={"programme_id": programme_id})
        return ParseResult.failure(f"{kind.upper()} parsing not implemented yet")
    return ParseResult.failure(f"Unsupported file type: {file_type!r}")
