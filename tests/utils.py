"""
Shared utilities for tests.

MSI databases are built in memory (string pool, string data and a
column-major Property table) and served through FakeOleFile, which stands in
for olefile.OleFileIO. PE fixtures are just enough header bytes for the
machine field to be read.

fixtures/ holds two real files opened without any patching:
contoso.msi, an OLE compound file with the Contoso Property table, string
pool and a SummaryInformation template of "x64;1033", and launcher.exe, a
32-bit launcher stub from distlib with an en-GB VS_VERSIONINFO resource.
"""
import io
import struct
from contextlib import contextmanager
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

from setupinfo.analyzers.msi import encode_stream_name

FIXTURES = Path(__file__).parent / "fixtures"
CONTOSO_MSI = FIXTURES / "contoso.msi"
LAUNCHER_EXE = FIXTURES / "launcher.exe"


def build_string_pool(strings, codepage=1252, long_refs=False):
    """Return (pool_bytes, data_bytes) for the given strings, ids starting at 1."""
    header = codepage | (0x80000000 if long_refs else 0)
    pool = struct.pack("<I", header)
    data = b""
    for s in strings:
        raw = s.encode("cp1252" if codepage == 1252 else "utf-8")
        if len(raw) > 0xFFFF:
            pool += struct.pack("<HH", 0, 1)
            pool += struct.pack("<HH", len(raw) & 0xFFFF, len(raw) >> 16)
        else:
            pool += struct.pack("<HH", len(raw), 1)
        data += raw
    return pool, data


def build_property_table(pairs, ids, ref_size=2):
    keys = b"".join(ids[k].to_bytes(ref_size, "little") for k, _ in pairs)
    values = b"".join(ids[v].to_bytes(ref_size, "little") for _, v in pairs)
    return keys + values


def build_msi_streams(properties, long_refs=False, codepage=1252, extra_tables=()):
    """Encoded stream name -> bytes for a database holding ``properties``."""
    pairs = list(properties.items()) if isinstance(properties, dict) else list(properties)
    strings = []
    for key, value in pairs:
        for s in (key, value):
            if s not in strings:
                strings.append(s)
    ids = {s: i + 1 for i, s in enumerate(strings)}

    pool, data = build_string_pool(strings, codepage=codepage, long_refs=long_refs)
    streams = {
        encode_stream_name("_StringPool"): pool,
        encode_stream_name("_StringData"): data,
        encode_stream_name("Property"): build_property_table(pairs, ids, 3 if long_refs else 2),
    }
    for table in extra_tables:
        streams[encode_stream_name(table)] = b""
    return streams


class FakeOleFile:
    """In-memory stand-in for olefile.OleFileIO."""

    instances = []

    def __init__(self, streams, template=None):
        self.streams = dict(streams)
        self.template = template
        self.closed = False
        self.close_calls = 0
        FakeOleFile.instances.append(self)

    def exists(self, name):
        return name in self.streams

    def openstream(self, name):
        return io.BytesIO(self.streams[name])

    def listdir(self, streams=True, storages=False):
        return [[name] for name in self.streams]

    def get_metadata(self):
        return SimpleNamespace(template=self.template)

    def close(self):
        self.closed = True
        self.close_calls += 1


@contextmanager
def fake_msi(streams, template=None, is_ole=True):
    """Patch olefile so any opened database is served from ``streams``."""
    FakeOleFile.instances = []
    with patch("olefile.isOleFile", return_value=is_ole), \
         patch("olefile.OleFileIO", side_effect=lambda *a, **kw: FakeOleFile(streams, template)):
        yield FakeOleFile.instances


def write_msi_placeholder(path):
    path.write_bytes(b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 504)
    return path


def pe_header(machine, e_lfanew=0x80, dos_magic=b"MZ", pe_magic=b"PE\x00\x00"):
    head = bytearray(e_lfanew)
    head[0:2] = dos_magic
    head[0x3C:0x40] = struct.pack("<I", e_lfanew)
    return bytes(head) + pe_magic + struct.pack("<H", machine) + b"\x00" * 18


def write_pe(path, machine, **kwargs):
    path.write_bytes(pe_header(machine, **kwargs))
    return path
