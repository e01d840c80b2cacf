import codecs
import logging
import struct
from contextlib import ExitStack
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

import olefile

from setupinfo.analyzers.base import BaseAnalyzer
from setupinfo.errors import DatabaseError, NotFoundError
from setupinfo.models import (
    AggregateProperties,
    PropertyNotFound,
    PropertyStream,
    SingleProperty,
)

logger = logging.getLogger(__name__)

# MSI stream names are compressed into the CJK range: two characters of this
# alphabet share one UTF-16 code unit, table streams carry a 0x4840 prefix.
STREAM_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz._"
TABLE_PREFIX = 0x4840
PAIR_BASE = 0x3800
SINGLE_BASE = 0x4800

LONG_STRING_REFS = 0x80000000
DEFAULT_CODEPAGE = "cp1252"

MSI_FIELDS = ("Manufacturer", "ProductName", "ProductVersion", "ProductCode", "ProductLanguage", "Template")


def encode_stream_name(name: str, table: bool = True) -> str:
    """Encode a table or stream name the way it is stored in the OLE container."""
    out = [chr(TABLE_PREFIX)] if table else []
    i = 0
    while i < len(name):
        first = STREAM_ALPHABET.find(name[i])
        if first == -1:
            out.append(name[i])
            i += 1
            continue
        second = STREAM_ALPHABET.find(name[i + 1]) if i + 1 < len(name) else -1
        if second != -1:
            out.append(chr(PAIR_BASE + first + (second << 6)))
            i += 2
        else:
            out.append(chr(SINGLE_BASE + first))
            i += 1
    return "".join(out)


def decode_stream_name(encoded: str) -> Tuple[str, bool]:
    """Decode a stored stream name. Returns (name, is_table)."""
    is_table = bool(encoded) and ord(encoded[0]) == TABLE_PREFIX
    if is_table:
        encoded = encoded[1:]
    out = []
    for ch in encoded:
        code = ord(ch)
        if PAIR_BASE <= code < SINGLE_BASE:
            code -= PAIR_BASE
            out.append(STREAM_ALPHABET[code & 0x3F])
            out.append(STREAM_ALPHABET[(code >> 6) & 0x3F])
        elif SINGLE_BASE <= code < TABLE_PREFIX:
            out.append(STREAM_ALPHABET[code - SINGLE_BASE])
        else:
            out.append(ch)
    return "".join(out), is_table


def _codec_for(codepage: int) -> str:
    if codepage == 0:
        return DEFAULT_CODEPAGE
    if codepage == 65001:
        return "utf-8"
    name = f"cp{codepage}"
    try:
        codecs.lookup(name)
    except LookupError:
        logger.warning(f"Unknown MSI code page {codepage}, decoding as {DEFAULT_CODEPAGE}")
        return DEFAULT_CODEPAGE
    return name


class StringPool:
    """The shared string table of an MSI database (_StringPool + _StringData)."""

    def __init__(self, pool: bytes, data: bytes):
        if len(pool) < 4:
            raise DatabaseError("String pool is truncated")

        header, = struct.unpack_from("<I", pool, 0)
        self.ref_size = 3 if header & LONG_STRING_REFS else 2
        self.codepage = header & ~LONG_STRING_REFS
        self.encoding = _codec_for(self.codepage)
        self._strings: List[Optional[str]] = [None]

        words = struct.unpack(f"<{len(pool) // 2}H", pool[:len(pool) // 2 * 2])
        count = len(words) // 2
        offset = 0
        i = 1
        while i < count:
            length, refs = words[i * 2], words[i * 2 + 1]
            if length == 0 and refs == 0:
                self._strings.append("")
                i += 1
                continue
            if length == 0:
                # Strings over 64k: the real length lives in the following entry
                if i + 1 >= count:
                    raise DatabaseError("String pool is truncated")
                length = (words[i * 2 + 3] << 16) + words[i * 2 + 2]
                i += 2
            else:
                i += 1
            chunk = data[offset:offset + length]
            if len(chunk) != length:
                raise DatabaseError("String data is shorter than the string pool declares")
            self._strings.append(chunk.decode(self.encoding, errors="replace"))
            offset += length

    def __len__(self):
        return len(self._strings)

    def lookup(self, string_id: int) -> Optional[str]:
        if string_id == 0:
            return None
        if string_id >= len(self._strings):
            raise DatabaseError(f"String id {string_id} is out of range")
        return self._strings[string_id]


class MsiDatabase:
    """Read-only handle on an MSI database. Closing is idempotent."""

    def __init__(self, path: Path, ole):
        self.path = path
        self._ole = ole
        self.strings: Optional[StringPool] = None
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        if self.closed:
            return
        self.closed = True
        try:
            self._ole.close()
        finally:
            self._ole = None

    def _check_open(self):
        if self.closed:
            raise DatabaseError("Database handle is closed", path=self.path)

    def read_stream(self, name: str, table: bool = True) -> bytes:
        self._check_open()
        encoded = encode_stream_name(name, table=table)
        if not self._ole.exists(encoded):
            raise DatabaseError(f"Stream '{name}' not found", path=self.path)
        try:
            stream = self._ole.openstream(encoded)
            try:
                return stream.read()
            finally:
                stream.close()
        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseError(f"Failed to read stream '{name}': {e}", path=self.path) from e

    def load_strings(self) -> StringPool:
        if self.strings is None:
            self.strings = StringPool(self.read_stream("_StringPool"), self.read_stream("_StringData"))
        return self.strings

    def open_view(self, table: str = "Property") -> "PropertyView":
        return PropertyView(self, table)

    def tables(self) -> List[str]:
        self._check_open()
        names = []
        for entry in self._ole.listdir(streams=True, storages=False):
            if len(entry) != 1:
                continue
            name, is_table = decode_stream_name(entry[0])
            if is_table:
                names.append(name)
        return sorted(names)

    def summary_template(self) -> Optional[str]:
        """Template entry of the SummaryInformation stream, e.g. 'x64;1033'."""
        self._check_open()
        try:
            meta = self._ole.get_metadata()
        except Exception as e:
            logger.warning(f"Could not read summary information of {self.path}: {e}")
            return None
        template = getattr(meta, "template", None)
        if isinstance(template, bytes):
            encoding = self.strings.encoding if self.strings is not None else DEFAULT_CODEPAGE
            template = template.decode(encoding, errors="replace")
        return template or None


class PropertyView:
    """
    A query over a two column string table (Property/Value). The table is
    stored column-major: every key reference first, then every value.
    """

    def __init__(self, database: MsiDatabase, table: str = "Property"):
        self.table = table
        self._database = database
        self._strings = database.load_strings()
        self._data = database.read_stream(table)
        self._width = self._strings.ref_size
        row_size = self._width * 2
        if len(self._data) % row_size:
            raise DatabaseError(
                f"Table '{table}' has {len(self._data)} bytes, not a multiple of the row size {row_size}",
                path=database.path,
            )
        self.row_count = len(self._data) // row_size
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self.closed = True
        self._data = b""

    def fetch(self) -> "PropertyCursor":
        if self.closed:
            raise DatabaseError(f"View on '{self.table}' is closed", path=self._database.path)
        return PropertyCursor(self)

    def _ref(self, column: int, row: int) -> int:
        start = (column * self.row_count + row) * self._width
        return int.from_bytes(self._data[start:start + self._width], "little")

    def read_row(self, row: int) -> Tuple[str, str]:
        try:
            key = self._strings.lookup(self._ref(0, row))
            value = self._strings.lookup(self._ref(1, row))
        except DatabaseError as e:
            raise DatabaseError(f"Row {row} of '{self.table}' is corrupt: {e}", path=self._database.path) from e
        if key is None:
            raise DatabaseError(f"Row {row} of '{self.table}' has no key", path=self._database.path)
        return key, value if value is not None else ""


class PropertyCursor:
    """Single forward pass over the rows of a view."""

    def __init__(self, view: PropertyView):
        self._view = view
        self._row = 0
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __iter__(self):
        return self

    def __next__(self) -> Tuple[str, str]:
        if self.closed or self._view.closed or self._row >= self._view.row_count:
            raise StopIteration
        row = self._view.read_row(self._row)
        self._row += 1
        return row

    def close(self):
        self.closed = True


def open_database(path) -> MsiDatabase:
    """Open an MSI database read-only and load its string pool."""
    file_path = Path(path)
    if not file_path.exists():
        raise NotFoundError(f"File not found: {file_path}", path=file_path)

    try:
        if not olefile.isOleFile(str(file_path)):
            raise DatabaseError("Not an OLE compound file", path=file_path)
        ole = olefile.OleFileIO(str(file_path))
    except DatabaseError:
        raise
    except Exception as e:
        raise DatabaseError(f"Cannot open MSI database: {e}", path=file_path) from e

    database = MsiDatabase(file_path, ole)
    try:
        database.load_strings()
    except BaseException:
        database.close()
        raise
    return database


class PropertyTable:
    """
    Handle on the Property table of one MSI file. Owns the database and the
    view, both released in reverse order by close().
    """

    def __init__(self, path):
        self.path = Path(path)
        self._stack = ExitStack()
        try:
            self.database = self._stack.enter_context(open_database(self.path))
            self.view = self._stack.enter_context(self.database.open_view("Property"))
        except BaseException:
            self._stack.close()
            raise

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self._stack.close()

    def stream(self) -> Iterator[Tuple[str, str]]:
        """Lazily yield every (key, value) row."""
        with self.view.fetch() as cursor:
            yield from cursor

    def single(self, name: str) -> Union[SingleProperty, PropertyNotFound]:
        with self.view.fetch() as cursor:
            for key, value in cursor:
                if key == name:
                    return SingleProperty(key, value)
        return PropertyNotFound(name)

    def aggregate(self, names: Iterable[str]) -> AggregateProperties:
        values: Dict[str, Optional[str]] = {name: None for name in names}
        with self.view.fetch() as cursor:
            for key, value in cursor:
                if key in values:
                    values[key] = value
        return AggregateProperties(values)

    def as_dict(self) -> Dict[str, str]:
        return dict(self.stream())


def open_property_table(path) -> PropertyTable:
    return PropertyTable(path)


def fetch_properties(handle: PropertyTable, names: Optional[Iterable[str]] = None):
    """
    Query the Property table by argument count:
    no names -> PropertyStream, one name -> SingleProperty or PropertyNotFound,
    several names -> AggregateProperties (absent names map to None).
    """
    if names is None:
        return PropertyStream(handle.stream())
    if isinstance(names, str):
        names = [names]
    names = list(names)
    if not names:
        return PropertyStream(handle.stream())
    if len(names) == 1:
        return handle.single(names[0])
    return handle.aggregate(names)


def iter_properties(path) -> Iterator[Tuple[str, str]]:
    """Stream every Property row of a file. Handles are released when the generator ends."""
    with open_property_table(path) as table:
        yield from table.stream()


def read_summary_template(path) -> Optional[str]:
    with open_database(path) as database:
        return database.summary_template()


def list_tables(path) -> List[str]:
    with open_database(path) as database:
        return database.tables()


class MsiAnalyzer(BaseAnalyzer):
    extension = '.msi'

    def analyze(self, file_path: Path) -> Dict[str, Optional[str]]:
        with open_property_table(file_path) as table:
            values = dict(table.aggregate(MSI_FIELDS).values)
            if not values.get("Template"):
                values["Template"] = table.database.summary_template()
        logger.debug(f"MSI properties of {file_path}: {values}")
        return values
