"""
Work queue + result ledger: crash-safe batch state on disk.

Files under data_dir (one record per line, '#' lines and blanks ignored):

  queue.txt            pending ISBNs, head first
  added.txt            ledger: saved to the catalogue
  already-exists.txt   ledger: save control was disabled
  not-found.txt        ledger: no matching resource
  errors.txt           ledger: "ISBN # message" (Unknown outcomes included)

Ordering rule: an outcome is appended to the ledger (fsync'd) BEFORE its ISBN
is removed from the queue head.  A crash between the two writes leaves the
ISBN in both places; the next initialize() purges it from the queue.  The
reverse order could lose the ISBN entirely.

Every mutation holds a FileLock on data_dir/.queue.lock so two processes can
never interleave writes to the same batch.

Usage:
    from smartcat.work_queue import WorkQueue, Outcome
    queue = WorkQueue(config["data_dir"])
    queue.initialize(isbns)
    while (isbn := queue.peek_head()) is not None:
        ... process ...
        queue.record_and_advance(isbn, Outcome.ADDED)
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

from filelock import FileLock

logger = logging.getLogger("smartcat")

QUEUE_FILE = "queue.txt"
ERROR_SEPARATOR = " # "
LOCK_TIMEOUT = 30


class Outcome(str, Enum):
    ADDED          = "ADDED"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    NOT_FOUND      = "NOT_FOUND"
    UNKNOWN        = "UNKNOWN"
    ERROR          = "ERROR"


class WorkItemState(str, Enum):
    PENDING   = "pending"
    IN_FLIGHT = "in_flight"
    RESOLVED  = "resolved"


@dataclass
class WorkItem:
    identifier: str
    state: WorkItemState = WorkItemState.PENDING


# Ledger file per outcome; Unknown shares the error set and carries its message.
LEDGER_FILES = {
    Outcome.ADDED:          "added.txt",
    Outcome.ALREADY_EXISTS: "already-exists.txt",
    Outcome.NOT_FOUND:      "not-found.txt",
    Outcome.ERROR:          "errors.txt",
    Outcome.UNKNOWN:        "errors.txt",
}


@dataclass
class LedgerSnapshot:
    added: list = field(default_factory=list)
    already_exists: list = field(default_factory=list)
    not_found: list = field(default_factory=list)
    errors: list = field(default_factory=list)  # [(isbn, message), ...]

    def identifiers(self) -> set:
        return (set(self.added) | set(self.already_exists) | set(self.not_found)
                | {isbn for isbn, _ in self.errors})

    def total(self) -> int:
        return len(self.added) + len(self.already_exists) + len(self.not_found) + len(self.errors)


# ── File helpers ──────────────────────────────────────────────────────────

def read_records(path: str) -> list:
    """Return the non-blank, non-comment lines of *path* (missing file → [])."""
    if not os.path.exists(path):
        return []
    with open(path, "r", encoding="utf-8") as f:
        lines = [line.strip() for line in f.read().splitlines()]
    return [line for line in lines if line and not line.startswith("#")]


def write_records(path: str, records: list) -> None:
    """Replace *path* atomically: temp file, fsync, rename."""
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        f.write("".join(f"{record}\n" for record in records))
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


def append_record(path: str, record: str) -> None:
    """Append one line and force it to disk before returning."""
    with open(path, "a", encoding="utf-8") as f:
        f.write(record + "\n")
        f.flush()
        os.fsync(f.fileno())


def _one_line(message: str) -> str:
    return " ".join(str(message).split())


# ── Ledger ────────────────────────────────────────────────────────────────

class Ledger:
    """Four append-only outcome sets. Entries are written once and never rewritten."""

    def __init__(self, data_dir: str):
        self.data_dir = data_dir
        os.makedirs(data_dir, exist_ok=True)

    def path_for(self, outcome: Outcome) -> str:
        return os.path.join(self.data_dir, LEDGER_FILES[outcome])

    def record(self, identifier: str, outcome: Outcome, message: str = "") -> bool:
        """Append *identifier* to the set for *outcome*. Returns False if it was already terminal."""
        if identifier in self.terminal_identifiers():
            logger.warning(f"  [ledger] {identifier} already has a terminal entry; not recording again")
            return False

        if outcome in (Outcome.ERROR, Outcome.UNKNOWN):
            text = _one_line(message) or "Unknown error"
            if outcome is Outcome.UNKNOWN:
                text = f"Unknown: {text}"
            record = f"{identifier}{ERROR_SEPARATOR}{text}"
        else:
            record = identifier

        append_record(self.path_for(outcome), record)
        logger.debug(f"  [ledger] {outcome.value}: {record}")
        return True

    def snapshot(self) -> LedgerSnapshot:
        errors = []
        for line in read_records(self.path_for(Outcome.ERROR)):
            isbn, _, message = line.partition(ERROR_SEPARATOR)
            errors.append((isbn.strip(), message.strip()))
        return LedgerSnapshot(
            added=read_records(self.path_for(Outcome.ADDED)),
            already_exists=read_records(self.path_for(Outcome.ALREADY_EXISTS)),
            not_found=read_records(self.path_for(Outcome.NOT_FOUND)),
            errors=errors,
        )

    def terminal_identifiers(self) -> set:
        return self.snapshot().identifiers()


# ── Queue ─────────────────────────────────────────────────────────────────

class WorkQueue:
    """Persisted FIFO of pending ISBNs; the head is the only item ever in flight."""

    def __init__(self, data_dir: str):
        os.makedirs(data_dir, exist_ok=True)
        self.data_dir = data_dir
        self.queue_file = os.path.join(data_dir, QUEUE_FILE)
        self.ledger = Ledger(data_dir)
        self._lock = FileLock(os.path.join(data_dir, ".queue.lock"), timeout=LOCK_TIMEOUT)
        self._in_flight: WorkItem | None = None

    # ── Public API ────────────────────────────────────────────────────

    def initialize(self, new_identifiers: list) -> list:
        """
        Merge *new_identifiers* into the persisted queue and return it.

        Order: surviving entries of the previous run first, then genuinely
        new ISBNs in input order.  Anything with a terminal ledger entry is
        dropped; duplicates keep their first position.
        """
        with self._lock:
            terminal = self.ledger.terminal_identifiers()
            existing = read_records(self.queue_file)

            merged: list = []
            seen: set = set()
            for isbn in existing:
                if isbn not in terminal and isbn not in seen:
                    merged.append(isbn)
                    seen.add(isbn)
            purged = len(existing) - len(merged)
            if purged:
                logger.info(f"Removed {purged} already-processed or duplicate ISBN(s) from queue")
            if merged:
                logger.info(f"Found existing queue with {len(merged)} ISBN(s)")

            carried = len(merged)
            skipped = 0
            for isbn in (str(i).strip() for i in new_identifiers):
                if not isbn:
                    continue
                if isbn in terminal:
                    skipped += 1
                    continue
                if isbn not in seen:
                    merged.append(isbn)
                    seen.add(isbn)

            if skipped:
                logger.info(f"Skipped {skipped} already-processed ISBN(s)")
            added = len(merged) - carried
            if added:
                logger.info(f"Adding {added} new ISBN(s) to queue")
            elif not merged:
                logger.info("All ISBNs have already been processed")

            write_records(self.queue_file, merged)
            return list(merged)

    def peek_head(self) -> str | None:
        """The next pending ISBN, or None when the queue is empty."""
        with self._lock:
            queue = read_records(self.queue_file)
        return queue[0] if queue else None

    def next_item(self) -> WorkItem | None:
        """Mark the head IN_FLIGHT and return it."""
        head = self.peek_head()
        if head is None:
            self._in_flight = None
            return None
        self._in_flight = WorkItem(head, WorkItemState.IN_FLIGHT)
        return self._in_flight

    def record_and_advance(self, identifier: str, outcome: Outcome, message: str = "") -> None:
        """Record the outcome durably, THEN drop the head. Never the other way round."""
        with self._lock:
            queue = read_records(self.queue_file)
            head = queue[0] if queue else None
            if head != identifier:
                raise ValueError(f"{identifier!r} is not at the head of the queue (head={head!r})")
            self.ledger.record(identifier, outcome, message)
            write_records(self.queue_file, queue[1:])

        if self._in_flight is not None and self._in_flight.identifier == identifier:
            self._in_flight.state = WorkItemState.RESOLVED
            self._in_flight = None

    def state_of(self, identifier: str) -> WorkItemState | None:
        """Lifecycle state of *identifier*, or None if it was never supplied."""
        if self._in_flight is not None and self._in_flight.identifier == identifier:
            return WorkItemState.IN_FLIGHT
        if identifier in self.ledger.terminal_identifiers():
            return WorkItemState.RESOLVED
        if identifier in self.pending():
            return WorkItemState.PENDING
        return None

    def pending(self) -> list:
        with self._lock:
            return read_records(self.queue_file)

    def snapshot(self) -> LedgerSnapshot:
        with self._lock:
            return self.ledger.snapshot()

    def __len__(self) -> int:
        return len(self.pending())
