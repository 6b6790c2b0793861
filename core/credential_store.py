"""
Durable pool of reusable test-user credentials.

Registration flows add the accounts they create to the pool; later runs take
one back out instead of signing up a fresh user every time. The file backed
store keeps the pool in a small CSV file that any number of pytest workers
may share:

    name,email,password,status
    "Jane Doe","jane@example.com","Passw0rd!123",
    "John Roe","john@example.com","Passw0rd!456",used

An empty status marks a user as available; ``used`` marks it consumed. A used
record never becomes available again and records are never removed.

Every read-modify-write runs under an advisory lock file next to the pool and
rewrites go through a temp file plus ``os.replace``, so concurrent workers
never receive the same user and a crash never leaves a half-written pool.
"""

import csv
import io
import logging
import os
import stat
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager, suppress
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional, Union

from core.retry import lock_acquisition_retrying
from core.settings import get_settings
from exceptions import (
    StoreNotFound,
    StorePoolEmpty,
    StoreExhausted,
    StoreIOError,
    StoreMalformedRecord,
    StoreLockTimeout,
    create_error_context,
)


logger = logging.getLogger(__name__)

HEADER = "name,email,password,status"
HEADER_FIELDS = HEADER.split(",")


class CredentialStatus(Enum):
    UNUSED = ""
    USED = "used"


@dataclass(frozen=True)
class UserCredentials:
    name: str
    email: str
    password: str


@dataclass
class CredentialRecord:
    name: str
    email: str
    password: str
    status: CredentialStatus = CredentialStatus.UNUSED

    @property
    def is_available(self) -> bool:
        return self.status is CredentialStatus.UNUSED

    def credentials(self) -> UserCredentials:
        return UserCredentials(self.name, self.email, self.password)

    def to_row(self) -> str:
        """Serialize as ``"name","email","password",status`` without a newline."""
        quoted = ",".join(_quote(value) for value in (self.name, self.email, self.password))
        return f"{quoted},{self.status.value}"


def _quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def parse_fields(fields: List[str]) -> CredentialRecord:
    """Build a record from one parsed CSV row; raises ``ValueError`` if malformed."""
    if len(fields) != 4:
        raise ValueError(f"expected 4 fields, got {len(fields)}")
    name, email, password, status = fields
    try:
        return CredentialRecord(name, email, password, CredentialStatus(status.strip()))
    except ValueError:
        raise ValueError(f"unknown status '{status.strip()}'") from None


@dataclass
class _Row:
    # One data line as read from disk; malformed lines keep their raw fields
    line_number: int
    fields: List[str]
    record: Optional[CredentialRecord] = None

    def render(self) -> str:
        if self.record is not None:
            return self.record.to_row()
        buffer = io.StringIO()
        csv.writer(buffer, lineterminator="\n").writerow(self.fields)
        return buffer.getvalue()[:-1]


class CredentialStore(ABC):
    """Pool of reusable credentials; implementations must be safe for concurrent callers."""

    @abstractmethod
    def append(self, name: str, email: str, password: str,
               status: CredentialStatus = CredentialStatus.UNUSED) -> None:
        """
        Add a user to the end of the pool.

        Users handed straight to a caller are appended as ``USED`` so no other
        worker can allocate them while they are in use.
        """

    @abstractmethod
    def allocate(self) -> UserCredentials:
        """
        Claim the earliest available user, mark it used and return it.

        Raises:
            StoreNotFound: the pool does not exist yet
            StorePoolEmpty: the pool holds no users
            StoreExhausted: every user has been claimed already
        """

    @abstractmethod
    def read_all(self) -> List[CredentialRecord]:
        """All users with their status, in insertion order. Never mutates the pool."""


class CsvCredentialStore(CredentialStore):
    """
    File backed credential pool shared between test processes.

    Args:
        path: CSV file holding the pool; its directory is created on first append
        lock_timeout: seconds to wait for another worker's lock before giving up
        stale_lock_after: lock files older than this many seconds are treated as
            abandoned by a killed worker and removed; ``None`` disables this
        strict: raise ``StoreMalformedRecord`` on a bad row instead of skipping it
    """

    def __init__(
        self,
        path: Union[str, Path],
        lock_timeout: float = 10.0,
        stale_lock_after: Optional[float] = 120.0,
        strict: bool = False,
    ):
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.lock_timeout = lock_timeout
        self.stale_lock_after = stale_lock_after
        self.strict = strict

    def __repr__(self) -> str:
        return f"CsvCredentialStore(path='{self.path}')"

    # --- public API ---

    def append(self, name: str, email: str, password: str,
               status: CredentialStatus = CredentialStatus.UNUSED) -> None:
        record = CredentialRecord(name, email, password, status)

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise self._io_error("append", f"Cannot create pool directory {self.path.parent}", e) from e

        with self._locked("append"):
            try:
                if not self.path.exists():
                    self._write_atomic(f"{HEADER}\n{record.to_row()}\n")
                    logger.info(f"Created new credential pool: {self.path}")
                else:
                    self._append_line(record.to_row())
            except OSError as e:
                raise self._io_error("append", f"Cannot write credential pool {self.path}", e) from e

        logger.info(f"User saved to credential pool: {email}")

    def allocate(self) -> UserCredentials:
        if not self.path.parent.is_dir():
            raise self._not_found()

        with self._locked("allocate"):
            rows = self._parse(self._read_text("allocate"))
            if not rows:
                raise StorePoolEmpty(
                    "Credential pool is empty or contains only headers. No users available.",
                    path=str(self.path),
                    error_context=create_error_context(component="Credential Store", operation="allocate")
                )

            target = next((row.record for row in rows if row.record and row.record.is_available), None)
            if target is None:
                raise StoreExhausted(
                    "No available users with empty status. All users have been used.",
                    path=str(self.path),
                    error_context=create_error_context(
                        component="Credential Store",
                        operation="allocate",
                        record_count=len(rows)
                    )
                )

            target.status = CredentialStatus.USED
            try:
                self._write_atomic(self._render(rows))
            except OSError as e:
                raise self._io_error("allocate", f"Cannot rewrite credential pool {self.path}", e) from e

        logger.info(f"User consumed from credential pool: {target.email}")
        return target.credentials()

    def read_all(self) -> List[CredentialRecord]:
        if not self.path.exists():
            logger.debug(f"Credential pool {self.path} does not exist yet")
            return []
        try:
            text = self._read_text("read_all")
        except StoreNotFound:
            return []
        return [row.record for row in self._parse(text) if row.record is not None]

    def available_count(self) -> int:
        return sum(1 for record in self.read_all() if record.is_available)

    # --- file handling ---

    def _read_text(self, operation: str) -> str:
        try:
            with open(self.path, "r", encoding="utf-8", newline="") as f:
                return f.read()
        except FileNotFoundError:
            raise self._not_found() from None
        except UnicodeDecodeError as e:
            raise StoreMalformedRecord(
                f"Credential pool is not valid UTF-8: {e}",
                path=str(self.path),
                error_context=create_error_context(component="Credential Store", operation=operation),
                cause=e
            ) from e
        except OSError as e:
            raise self._io_error(operation, f"Cannot read credential pool {self.path}", e) from e

    def _parse(self, text: str) -> List[_Row]:
        reader = csv.reader(io.StringIO(text))
        rows: List[_Row] = []
        header_seen = False

        for fields in reader:
            # Blank and whitespace-only lines carry no data
            if not fields or (len(fields) == 1 and not fields[0].strip()):
                continue

            if not header_seen:
                header_seen = True
                if fields != HEADER_FIELDS:
                    logger.warning(f"Unexpected header in {self.path}: {','.join(fields)}")
                continue

            try:
                record = parse_fields(fields)
            except ValueError as e:
                if self.strict:
                    raise StoreMalformedRecord(
                        f"Malformed row at line {reader.line_num}: {e}",
                        path=str(self.path),
                        line_number=reader.line_num,
                        error_context=create_error_context(component="Credential Store", operation="parse")
                    ) from e
                logger.warning(f"Skipping malformed row at line {reader.line_num} of {self.path}: {e}")
                record = None

            rows.append(_Row(line_number=reader.line_num, fields=fields, record=record))

        return rows

    @staticmethod
    def _render(rows: List[_Row]) -> str:
        return HEADER + "\n" + "".join(row.render() + "\n" for row in rows)

    def _append_line(self, row: str):
        with open(self.path, "rb") as f:
            f.seek(0, os.SEEK_END)
            size = f.tell()
            last_byte = b""
            if size:
                f.seek(-1, os.SEEK_END)
                last_byte = f.read(1)

        if size == 0:
            content = f"{HEADER}\n{row}\n"
        elif last_byte != b"\n":
            content = f"\n{row}\n"
        else:
            content = f"{row}\n"

        with open(self.path, "a", encoding="utf-8", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

    def _write_atomic(self, content: str):
        fd, tmp_path = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            # mkstemp creates 0600; keep whatever mode the pool already had
            if self.path.exists():
                os.chmod(tmp_path, stat.S_IMODE(os.stat(self.path).st_mode))
            os.replace(tmp_path, self.path)
        except BaseException:
            with suppress(FileNotFoundError):
                os.unlink(tmp_path)
            raise

    # --- locking ---

    @contextmanager
    def _locked(self, operation: str) -> Iterator[None]:
        fd = self._acquire_lock(operation)
        try:
            try:
                os.write(fd, f"{os.getpid()}\n".encode())
            finally:
                os.close(fd)
            yield
        finally:
            try:
                os.unlink(self.lock_path)
            except FileNotFoundError:
                logger.warning(f"Lock file {self.lock_path} disappeared while held")

    def _acquire_lock(self, operation: str) -> int:
        fd = None
        try:
            for attempt in lock_acquisition_retrying(self.lock_timeout):
                with attempt:
                    self._break_stale_lock()
                    fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError as e:
            raise StoreLockTimeout(
                f"Could not acquire credential pool lock within {self.lock_timeout}s",
                path=str(self.path),
                timeout=self.lock_timeout,
                error_context=create_error_context(
                    component="Credential Store",
                    operation=operation,
                    lock_path=str(self.lock_path)
                ),
                cause=e
            ) from e
        except OSError as e:
            raise self._io_error(operation, f"Cannot create lock file {self.lock_path}", e) from e
        return fd

    def _break_stale_lock(self):
        if self.stale_lock_after is None:
            return
        try:
            age = time.time() - os.stat(self.lock_path).st_mtime
        except FileNotFoundError:
            return
        if age > self.stale_lock_after:
            logger.warning(f"Removing stale credential pool lock {self.lock_path} ({age:.0f}s old)")
            with suppress(FileNotFoundError):
                os.unlink(self.lock_path)

    # --- errors ---

    def _not_found(self) -> StoreNotFound:
        return StoreNotFound(
            f"Credential pool does not exist: {self.path.resolve()}. Please create users first.",
            path=str(self.path),
            error_context=create_error_context(component="Credential Store", operation="allocate")
        )

    def _io_error(self, operation: str, message: str, cause: OSError) -> StoreIOError:
        return StoreIOError(
            f"{message}: {cause}",
            path=str(self.path),
            error_context=create_error_context(component="Credential Store", operation=operation),
            cause=cause
        )


class InMemoryCredentialStore(CredentialStore):
    """Process-local pool with the same contract as the file store."""

    def __init__(self, records: Optional[List[CredentialRecord]] = None):
        self._records: List[CredentialRecord] = list(records or [])
        self._lock = threading.Lock()

    def append(self, name: str, email: str, password: str,
               status: CredentialStatus = CredentialStatus.UNUSED) -> None:
        with self._lock:
            self._records.append(CredentialRecord(name, email, password, status))

    def allocate(self) -> UserCredentials:
        with self._lock:
            if not self._records:
                raise StorePoolEmpty("In-memory credential pool is empty")
            for record in self._records:
                if record.is_available:
                    record.status = CredentialStatus.USED
                    return record.credentials()
        raise StoreExhausted("No available users with empty status. All users have been used.")

    def read_all(self) -> List[CredentialRecord]:
        with self._lock:
            return [CredentialRecord(r.name, r.email, r.password, r.status) for r in self._records]


# --- module level helpers ---


def open_store(path: Optional[Union[str, Path]] = None) -> CsvCredentialStore:
    """File store configured from settings; ``path`` overrides the pool location."""
    settings = get_settings()
    return CsvCredentialStore(
        path or settings.credential_pool_path,
        lock_timeout=settings.credential_lock_timeout,
        stale_lock_after=settings.credential_lock_stale_after,
        strict=settings.credential_strict_parsing,
    )


def save_user(name: str, email: str, password: str, path: Optional[Union[str, Path]] = None) -> None:
    open_store(path).append(name, email, password)


def get_user(path: Optional[Union[str, Path]] = None) -> UserCredentials:
    return open_store(path).allocate()


def read_users(path: Optional[Union[str, Path]] = None) -> List[CredentialRecord]:
    return open_store(path).read_all()
