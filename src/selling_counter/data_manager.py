"""Data access layer for Selling Counter.

This module owns everything that touches the ``sales.csv`` artifact.
Business rules belong in :mod:`selling_counter.core_logic`.

The public API is designed around three responsibilities:

1. Configuration handling: resolving where the ledger lives from the
   environment and an optional ``config.ini``.
2. Row codec: converting between :class:`SaleRow` records and CSV text.
3. Ledger storage: loading, appending, resetting, and exporting the artifact,
   optionally mirrored to a remote object store.
"""


from __future__ import annotations

import configparser
import csv
import io
import math
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Optional

from . import log
from .constants import (
    BOM,
    CSV_COLUMNS,
    DEFAULT_DATA_DIR_NAME,
    DEFAULT_MIRROR_KEY,
    DEFAULT_MIRROR_TIMEOUT,
    ENV_DATA_DIR,
    ENV_MIRROR_KEY,
    ENV_MIRROR_TIMEOUT,
    ENV_MIRROR_TOKEN,
    ENV_MIRROR_URL,
    ENV_RESTRICTED_FS,
    LEDGER_FILE_NAME,
    RESTRICTED_DATA_DIR_NAME,
    CsvColumn,
)
from .mirror import MirrorUnavailable, ObjectSink


CONFIG_FILE_NAME = "config.ini"
STORAGE_SECTION = "Storage"


class StorageUnavailable(RuntimeError):
    """Raised when the local ledger file cannot be read or written."""


@dataclass(frozen=True)
class StoreSettings:
    """Resolved storage configuration handed to :class:`LedgerStore`."""

    data_dir: Path
    mirror_url: Optional[str] = None
    mirror_key: str = DEFAULT_MIRROR_KEY
    mirror_token: Optional[str] = None
    mirror_timeout: float = DEFAULT_MIRROR_TIMEOUT

    @property
    def ledger_path(self) -> Path:
        return self.data_dir / LEDGER_FILE_NAME


@dataclass(frozen=True)
class SaleRow:
    """One recorded sale, in the ledger's fixed column order."""

    product_name: str
    price: int
    quantity: int
    payment_method: str


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def find_config_file(explicit_path: Optional[Path] = None) -> Optional[Path]:
    """Locate the optional ``config.ini`` controlling where the ledger lives.

    An explicit path wins without verification. Otherwise the search walks up
    from the current working directory and returns the first
    ``CONFIG_FILE_NAME`` found on disk.

    Args:
        explicit_path (Path | None): Path to use instead of searching.

    Returns:
        Path | None: The configuration file, or ``None`` when no file exists.
            Unlike the ledger location itself, the file is optional because the
            environment alone can configure the store.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    return None


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser with the raw configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def is_restricted_environment(environ: Mapping[str, str]) -> bool:
    """Return ``True`` on hosts whose filesystem is read-only outside the temp dir."""

    return environ.get(ENV_RESTRICTED_FS, "").strip().lower() in {"1", "true"}


def _config_option(parser: Optional[configparser.ConfigParser], option: str) -> Optional[str]:
    if parser is None or not parser.has_section(STORAGE_SECTION):
        return None
    value = parser.get(STORAGE_SECTION, option, fallback=None)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_option(environ: Mapping[str, str], name: str) -> Optional[str]:
    value = environ.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def resolve_data_dir(
    parser: Optional[configparser.ConfigParser],
    environ: Mapping[str, str],
    *,
    base_path: Optional[Path] = None,
) -> Path:
    """Pick the directory holding ``sales.csv``.

    Precedence: the ``SALES_DATA_DIR`` environment override, the ``DataDir``
    entry of ``config.ini`` (relative to ``base_path``), the temp directory on
    restricted hosts, and finally ``./data``.
    """

    env_dir = _env_option(environ, ENV_DATA_DIR)
    if env_dir:
        return Path(env_dir).expanduser().resolve()

    config_dir = _config_option(parser, "DataDir")
    if config_dir:
        data_dir = Path(config_dir).expanduser()
        if not data_dir.is_absolute():
            data_dir = (base_path if base_path is not None else Path.cwd()) / data_dir
        return data_dir.resolve()

    if is_restricted_environment(environ):
        return Path(tempfile.gettempdir()) / RESTRICTED_DATA_DIR_NAME

    return (Path.cwd() / DEFAULT_DATA_DIR_NAME).resolve()


def resolve_settings(
    parser: Optional[configparser.ConfigParser] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    base_path: Optional[Path] = None,
) -> StoreSettings:
    """Combine environment variables and ``config.ini`` into :class:`StoreSettings`.

    Environment variables take precedence over the ``[Storage]`` section of the
    configuration file, which in turn overrides built-in defaults.

    Args:
        parser (configparser.ConfigParser | None): Parsed ``config.ini``, or
            ``None`` when the deployment has no configuration file.
        environ (Mapping[str, str] | None): Environment to read. Defaults to
            :data:`os.environ`.
        base_path (Path | None): Anchor for relative ``DataDir`` entries,
            usually the directory containing ``config.ini``.

    Returns:
        StoreSettings: Immutable settings with an absolute data directory.

    Raises:
        ValueError: If the mirror timeout is not a positive number.
    """

    if environ is None:
        environ = os.environ

    data_dir = resolve_data_dir(parser, environ, base_path=base_path)
    mirror_url = _env_option(environ, ENV_MIRROR_URL) or _config_option(parser, "MirrorUrl")
    mirror_key = (
        _env_option(environ, ENV_MIRROR_KEY)
        or _config_option(parser, "MirrorKey")
        or DEFAULT_MIRROR_KEY
    )
    mirror_token = _env_option(environ, ENV_MIRROR_TOKEN)
    timeout_raw = _env_option(environ, ENV_MIRROR_TIMEOUT) or _config_option(parser, "MirrorTimeout")

    mirror_timeout = DEFAULT_MIRROR_TIMEOUT
    if timeout_raw is not None:
        try:
            mirror_timeout = float(timeout_raw)
        except ValueError as exc:
            raise ValueError(f"Invalid mirror timeout: {timeout_raw!r}") from exc
        if not math.isfinite(mirror_timeout) or mirror_timeout <= 0:
            raise ValueError(f"Mirror timeout must be positive: {timeout_raw!r}")

    return StoreSettings(
        data_dir=data_dir,
        mirror_url=mirror_url,
        mirror_key=mirror_key,
        mirror_token=mirror_token,
        mirror_timeout=mirror_timeout,
    )


# ---------------------------------------------------------------------------
# Row codec
# ---------------------------------------------------------------------------


def strip_bom(text: str) -> str:
    if text.startswith(BOM):
        return text[len(BOM):]
    return text


def _coerce_int(raw: object) -> int:
    """Truncate a CSV cell to an integer; blanks and garbage become ``0``."""

    if raw is None:
        return 0
    text = str(raw).strip()
    if not text:
        return 0
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return math.trunc(float(text))
    except (ValueError, OverflowError):
        return 0


def _coerce_text(raw: object) -> str:
    return str(raw).strip() if raw is not None else ""


def serialize_sale(record: SaleRow) -> list[object]:
    """Convert a sale into the ledger column ordering.

    Returns:
        list[object]: ``[product_name, price, quantity, payment_method]``.
    """

    return [record.product_name, record.price, record.quantity, record.payment_method]


def deserialize_sale(record: Mapping[Optional[str], object]) -> SaleRow:
    """Convert one ``csv.DictReader`` record into a :class:`SaleRow`.

    Columns are looked up by header label so their order in the file does not
    matter. Numeric cells that are missing or unparseable become ``0``; text
    cells are trimmed and default to an empty string.
    """

    return SaleRow(
        product_name=_coerce_text(record.get(CsvColumn.PRODUCT_NAME.value)),
        price=_coerce_int(record.get(CsvColumn.PRICE.value)),
        quantity=_coerce_int(record.get(CsvColumn.QUANTITY.value)),
        payment_method=_coerce_text(record.get(CsvColumn.PAYMENT_METHOD.value)),
    )


def _is_blank_record(record: Mapping[Optional[str], object]) -> bool:
    values: list[object] = [value for key, value in record.items() if key is not None]
    extra = record.get(None)
    if isinstance(extra, list):
        values.extend(extra)
    return all(not _coerce_text(value) for value in values)


def decode_ledger(text: str) -> list[SaleRow]:
    """Parse ledger CSV text into sale rows, tolerating damaged lines.

    A leading byte-order marker is stripped and the header row maps cells to
    fields. Blank lines are skipped. Lines with the wrong number of cells are
    zero-filled, and lines the ``csv`` module cannot parse are dropped. All
    problems are reported in a single warning for the document; they never
    abort decoding.

    Args:
        text (str): Full artifact contents, decoded from UTF-8.

    Returns:
        list[SaleRow]: Rows in file order.
    """

    reader = csv.DictReader(io.StringIO(strip_bom(text), newline=""))
    rows: list[SaleRow] = []
    problems: list[str] = []

    try:
        header = reader.fieldnames
    except csv.Error as exc:
        log.warning("CSV parse errors: unreadable header: %s", exc)
        return rows
    if header is None:
        return rows

    missing = [column for column in CSV_COLUMNS if column not in header]
    if missing:
        problems.append(f"header is missing columns {missing}")

    while True:
        try:
            record = next(reader)
        except StopIteration:
            break
        except csv.Error as exc:
            problems.append(f"line {reader.line_num}: {exc}")
            continue

        if _is_blank_record(record):
            continue
        if None in record or None in record.values():
            problems.append(f"line {reader.line_num}: expected {len(header)} fields")
        rows.append(deserialize_sale(record))

    if problems:
        log.warning("CSV parse errors: %s", "; ".join(problems))
    return rows


def encode_ledger(rows: Iterable[SaleRow], include_header: bool = True) -> str:
    """Serialize rows as CSV text in the fixed column order.

    Cells containing commas, quotes, or line breaks are quoted. Every line,
    including the header, ends with ``\\n``. No byte-order marker is added.
    """

    buffer = io.StringIO(newline="")
    writer = csv.writer(buffer, lineterminator="\n")
    if include_header:
        writer.writerow(CSV_COLUMNS)
    writer.writerows(serialize_sale(row) for row in rows)
    return buffer.getvalue()


def empty_artifact() -> bytes:
    """Return the bytes of a ledger holding only the marker and header."""

    return (BOM + encode_ledger([], include_header=True)).encode("utf-8")


# ---------------------------------------------------------------------------
# Ledger storage
# ---------------------------------------------------------------------------


_PATH_LOCKS: dict[Path, threading.Lock] = {}
_PATH_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    """Return the process-wide mutex serializing access to ``path``."""

    key = path.expanduser().resolve()
    with _PATH_LOCKS_GUARD:
        lock = _PATH_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _PATH_LOCKS[key] = lock
        return lock


class LedgerStore:
    """Append-only CSV ledger with an optional remote mirror.

    The local file is the working copy. When a sink is configured, reads and
    appends first pull the remote artifact over the local one, and every
    write pushes the full artifact back. Mirror failures are logged and the
    store carries on with the local copy, so the mirror is only eventually
    consistent.

    Operations on the same ledger path are serialized within one process.
    The lock is held across mirror calls, so a slow or unreachable mirror
    delays other operations on the path by up to the mirror timeout for each
    pull and push. Pulling outside the lock would let an append overwrite a
    newer remote copy.
    Separate processes sharing a mirror are not coordinated and can lose
    concurrent appends.

    Args:
        settings (StoreSettings): Resolved storage location and mirror options.
        sink (ObjectSink | None): Remote mirror, or ``None`` for local-only use.
    """

    def __init__(self, settings: StoreSettings, sink: Optional[ObjectSink] = None) -> None:
        self.settings = settings
        self.sink = sink
        self._lock = _lock_for(settings.ledger_path)

    @property
    def ledger_path(self) -> Path:
        return self.settings.ledger_path

    def load_all(self) -> list[SaleRow]:
        """Return every recorded sale in insertion order (``[]`` when absent)."""

        with self._lock:
            self._pull_mirror()
            raw = self._read_local()
        if not raw:
            return []
        return decode_ledger(raw.decode("utf-8", errors="replace"))

    def append(self, row: SaleRow) -> None:
        """Add ``row`` to the end of the ledger, creating the artifact if needed."""

        with self._lock:
            self._pull_mirror()
            try:
                self._ensure_data_dir()
                if self._has_artifact():
                    self._append_line(encode_ledger([row], include_header=False).encode("utf-8"))
                else:
                    content = BOM + encode_ledger([row], include_header=True)
                    self.ledger_path.write_bytes(content.encode("utf-8"))
                data = self.ledger_path.read_bytes()
            except OSError as exc:
                raise self._storage_error("append to", exc) from exc
            self._push_mirror(data)
        log.info(
            "Recorded sale of %d x '%s' (%s) in '%s'",
            row.quantity,
            row.product_name,
            row.payment_method,
            self.ledger_path,
        )

    def reset(self) -> None:
        """Delete every recorded sale. Resetting an empty ledger is a no-op."""

        with self._lock:
            try:
                self.ledger_path.unlink(missing_ok=True)
            except OSError as exc:
                raise self._storage_error("reset", exc) from exc
            self._push_mirror(empty_artifact())
        log.info("Reset sales ledger '%s'", self.ledger_path)

    def export_raw(self) -> bytes:
        """Return the artifact bytes, or a header-only artifact when none exists."""

        with self._lock:
            self._pull_mirror()
            raw = self._read_local()
        return raw if raw else empty_artifact()

    def artifact_size(self) -> int:
        return len(self.export_raw())

    def _ensure_data_dir(self) -> None:
        self.settings.data_dir.mkdir(parents=True, exist_ok=True)

    def _has_artifact(self) -> bool:
        # A zero-byte file has no header, so it is recreated like a missing one.
        return self.ledger_path.is_file() and self.ledger_path.stat().st_size > 0

    def _append_line(self, payload: bytes) -> None:
        with self.ledger_path.open("ab+") as handle:
            handle.seek(-1, os.SEEK_END)
            if handle.read(1) != b"\n":
                payload = b"\n" + payload
            handle.write(payload)

    def _read_local(self) -> Optional[bytes]:
        try:
            return self.ledger_path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise self._storage_error("read", exc) from exc

    def _pull_mirror(self) -> None:
        if self.sink is None:
            return
        try:
            data = self.sink.get_latest()
        except MirrorUnavailable as exc:
            log.warning("Mirror read failed, using local copy of '%s': %s", self.ledger_path, exc)
            return
        if data is None:
            log.debug("Mirror holds no ledger yet; keeping local copy")
            return
        try:
            self._ensure_data_dir()
            self.ledger_path.write_bytes(data)
        except OSError as exc:
            raise self._storage_error("refresh", exc) from exc

    def _push_mirror(self, data: bytes) -> None:
        if self.sink is None:
            return
        try:
            self.sink.put(data)
        except MirrorUnavailable as exc:
            log.warning("Mirror push failed; remote ledger stays stale until the next write: %s", exc)

    def _storage_error(self, action: str, exc: OSError) -> StorageUnavailable:
        log.error("Unable to %s sales ledger '%s': %s", action, self.ledger_path, exc)
        return StorageUnavailable(f"Unable to {action} sales ledger '{self.ledger_path}': {exc}")
