__version__ = "2026.10.0"

from setupinfo.errors import (  # noqa: E402
    DatabaseError,
    FormatError,
    NotFoundError,
    SetupInfoError,
    UnsupportedFormatError,
)
from setupinfo.extractor import SetupFileExtractor, get_setup_file_information  # noqa: E402
from setupinfo.models import Architecture, FileType, InstallerRecord  # noqa: E402

__all__ = [
    "Architecture",
    "DatabaseError",
    "FileType",
    "FormatError",
    "InstallerRecord",
    "NotFoundError",
    "SetupFileExtractor",
    "SetupInfoError",
    "UnsupportedFormatError",
    "get_setup_file_information",
]
