import locale
import logging
import re
from typing import Mapping, Optional, Protocol

logger = logging.getLogger(__name__)

_ISO_CODE = re.compile(r"^[A-Za-z]{2}$")


class LocaleResolver(Protocol):
    def to_iso(self, lcid: int) -> str:
        """Map a Windows LCID to a two-letter ISO 639-1 code. Raises KeyError when unknown."""
        ...


class WindowsLocaleResolver:
    """
    Resolves LCIDs using the Windows locale table shipped with the standard
    library (``locale.windows_locale``), e.g. 1033 -> 'en_US' -> 'EN'.
    """

    def __init__(self, table: Optional[Mapping[int, str]] = None):
        self._table = table if table is not None else locale.windows_locale

    def to_iso(self, lcid: int) -> str:
        tag = self._table[lcid]
        language = tag.split("_", 1)[0]
        if not _ISO_CODE.match(language):
            raise ValueError(f"LCID {lcid} maps to non ISO 639-1 tag {tag!r}")
        return language.upper()


class MappingLocaleResolver:
    """Fixed id -> code table. Handy for tests and for overriding odd LCIDs."""

    def __init__(self, mapping: Mapping[int, str]):
        self._mapping = dict(mapping)

    def to_iso(self, lcid: int) -> str:
        return self._mapping[lcid].upper()


def normalize_language(raw: Optional[str], resolver: Optional[LocaleResolver] = None) -> Optional[str]:
    """
    Normalize a raw language value to an uppercase two-letter code.

    Two-letter codes are uppercased as-is, numeric values are treated as LCIDs.
    Anything that cannot be mapped is returned unchanged.
    """
    if raw is None:
        return None

    value = str(raw).strip()
    if not value:
        return None

    if _ISO_CODE.match(value):
        return value.upper()

    resolver = resolver or WindowsLocaleResolver()
    try:
        # MSI ProductLanguage may list several ids ("1033,1031"); the first wins
        lcid = int(value.split(",", 1)[0].strip())
        return resolver.to_iso(lcid)
    except (KeyError, ValueError, TypeError) as e:
        logger.debug(f"Could not map language '{value}': {e}")
        return value
