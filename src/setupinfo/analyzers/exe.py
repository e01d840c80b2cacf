import logging
import struct
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

import pefile

from setupinfo.analyzers.base import BaseAnalyzer
from setupinfo.errors import FormatError, NotFoundError
from setupinfo.models import Architecture

logger = logging.getLogger(__name__)

DEFAULT_VERSION_FIELDS = ("ProductName", "ProductVersion", "CompanyName", "Language")

DOS_SIGNATURE = 0x5A4D  # "MZ"
PE_SIGNATURE = 0x00004550  # "PE\0\0"
PE_OFFSET_POINTER = 0x3C

MACHINE_TYPES = {
    0x014C: Architecture.X86,
    0x8664: Architecture.X64,
    0xAA64: Architecture.ARM64,
}


def _decode(value) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore")
    return str(value)


def _lcid_from_lang_id(lang_id) -> Optional[int]:
    """StringTable keys look like '040904b0': language id then code page."""
    try:
        lcid = int(_decode(lang_id)[:4], 16)
    except ValueError:
        return None
    return lcid or None


def _lcid_from_translation(translation) -> Optional[int]:
    # pefile renders VarFileInfo\Translation as "0x0409 0x04b0"
    try:
        lcid = int(_decode(translation).split()[0], 16)
    except (ValueError, IndexError):
        return None
    return lcid or None


def _load_version_resource(file_path: Path) -> Tuple[Dict[str, str], Optional[int]]:
    try:
        pe = pefile.PE(str(file_path), fast_load=True)
    except pefile.PEFormatError as e:
        raise FormatError(f"Not a valid PE file: {e}", path=file_path)
    except OSError as e:
        raise FormatError(f"Could not read PE file: {e}", path=file_path)
    except Exception as e:
        # pefile reports unreadable files (directories, locked or denied) as a bare Exception
        raise FormatError(f"Could not read PE file: {e}", path=file_path) from e

    strings: Dict[str, str] = {}
    lcid = None
    translation_lcid = None
    try:
        try:
            pe.parse_data_directories(
                directories=[pefile.DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_RESOURCE"]]
            )
        except pefile.PEFormatError as e:
            raise FormatError(f"Broken resource directory: {e}", path=file_path)
        file_info = getattr(pe, "FileInfo", None)
        if not getattr(pe, "VS_VERSIONINFO", None) or not file_info:
            raise FormatError("No version resource", path=file_path)

        for finfo in file_info:
            for entry in finfo:
                for table in getattr(entry, "StringTable", None) or []:
                    if lcid is None:
                        lcid = _lcid_from_lang_id(getattr(table, "LangID", b""))
                    for key, val in table.entries.items():
                        strings[_decode(key)] = _decode(val)
                for var in getattr(entry, "Var", None) or []:
                    for key, val in getattr(var, "entry", {}).items():
                        if _decode(key) == "Translation" and translation_lcid is None:
                            translation_lcid = _lcid_from_translation(val)
    finally:
        pe.close()

    return strings, lcid if lcid is not None else translation_lcid


def read_version_info(path, fields: Optional[Iterable[str]] = None,
                      all_fields: bool = False) -> Dict[str, Optional[str]]:
    """
    Read the version resource of an executable.

    Returns the requested fields (ProductName, ProductVersion, CompanyName and
    Language by default). ``Language`` is the decimal LCID of the string table,
    e.g. "1033". With ``all_fields`` every string table entry is returned.
    Files without a version resource yield ``None`` for every field.
    """
    file_path = Path(path)
    if not file_path.exists():
        raise NotFoundError(f"File not found: {file_path}", path=file_path)

    requested = list(fields) if fields else list(DEFAULT_VERSION_FIELDS)

    try:
        strings, lcid = _load_version_resource(file_path)
    except FormatError as e:
        logger.warning(f"No version information for {file_path}: {e}")
        return {name: None for name in requested}

    language = str(lcid) if lcid is not None else None
    if all_fields:
        result: Dict[str, Optional[str]] = dict(strings)
        result["Language"] = language
        return result

    return {
        name: language if name == "Language" else strings.get(name)
        for name in requested
    }


def detect_architecture_from_pe(path) -> Architecture:
    """
    Read the machine field of the PE header. Never raises: anything that is
    not a readable PE image is reported as Unknown.
    """
    try:
        with open(path, 'rb') as f:
            dos_magic, = struct.unpack("<H", f.read(2))
            if dos_magic != DOS_SIGNATURE:
                return Architecture.UNKNOWN

            f.seek(PE_OFFSET_POINTER)
            pe_offset, = struct.unpack("<I", f.read(4))
            f.seek(pe_offset)
            pe_magic, = struct.unpack("<I", f.read(4))
            if pe_magic != PE_SIGNATURE:
                return Architecture.UNKNOWN

            machine, = struct.unpack("<H", f.read(2))
    except (OSError, struct.error, ValueError, TypeError) as e:
        logger.debug(f"PE header sniffing failed for {path}: {e}")
        return Architecture.UNKNOWN

    return MACHINE_TYPES.get(machine, Architecture.UNKNOWN)


class ExeAnalyzer(BaseAnalyzer):
    extension = '.exe'

    def analyze(self, file_path: Path) -> Dict[str, Optional[str]]:
        return read_version_info(file_path)
