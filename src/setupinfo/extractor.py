"""
Unified installer metadata extraction.

Dispatches a file to the MSI or EXE reader by extension and maps the
format-specific fields onto one InstallerRecord, inferring the target
architecture and normalizing the language code on the way.
"""
import logging
import re
from pathlib import Path
from typing import Iterable, Iterator, Optional, Tuple

from setupinfo.analyzers.exe import ExeAnalyzer, detect_architecture_from_pe
from setupinfo.analyzers.msi import MsiAnalyzer
from setupinfo.errors import NotFoundError, SetupInfoError, UnsupportedFormatError
from setupinfo.models import Architecture, FileType, InstallerRecord
from setupinfo.utils.config import SetupInfoConfig
from setupinfo.utils.locale_map import LocaleResolver, WindowsLocaleResolver, normalize_language

logger = logging.getLogger(__name__)

NAME_PATTERNS = [
    (re.compile(r"x86[_-]64|x64|64-bit|64bit", re.IGNORECASE), Architecture.X64),
    (re.compile(r"x86|32-bit|32bit", re.IGNORECASE), Architecture.X86),
    (re.compile(r"arm64|aarch64", re.IGNORECASE), Architecture.ARM64),
]

# "Intel64" has to win over "Intel"
TEMPLATE_PATTERNS = [
    (re.compile(r"x64|AMD64|Intel64", re.IGNORECASE), Architecture.X64),
    (re.compile(r"Arm64", re.IGNORECASE), Architecture.ARM64),
    (re.compile(r"Intel", re.IGNORECASE), Architecture.X86),
]

FILENAME_PATTERNS = [
    (re.compile(r"(?:^|[_\-.\s])(?:x64|amd64|win64|x86_64|64bit|64-bit)(?=$|[_\-.\s])", re.IGNORECASE), Architecture.X64),
    (re.compile(r"(?:^|[_\-.\s])(?:arm64|aarch64)(?=$|[_\-.\s])", re.IGNORECASE), Architecture.ARM64),
    (re.compile(r"(?:^|[_\-.\s])(?:x86|win32|i386|i686|32bit|32-bit)(?=$|[_\-.\s])", re.IGNORECASE), Architecture.X86),
]


def _match_architecture(text: Optional[str], patterns) -> Optional[Architecture]:
    if not text:
        return None
    for pattern, arch in patterns:
        if pattern.search(text):
            return arch
    return None


class SetupFileExtractor:
    """
    Extracts an InstallerRecord from a single .msi or .exe file.

    The locale resolver and the fallback architecture can be injected; by
    default the Windows locale table and the configured DefaultArchitecture
    (x64) are used.
    """

    def __init__(self, locale_resolver: Optional[LocaleResolver] = None,
                 default_architecture: Optional[Architecture] = None):
        self.locale_resolver = locale_resolver or WindowsLocaleResolver()
        if default_architecture is None:
            default_architecture = SetupInfoConfig.get_default_architecture()
        self.default_architecture = default_architecture
        self.msi_analyzer = MsiAnalyzer()
        self.exe_analyzer = ExeAnalyzer()

    def _file_type(self, file_path: Path) -> FileType:
        if not file_path.exists():
            raise NotFoundError(f"File not found: {file_path}", path=file_path)
        if self.msi_analyzer.can_analyze(file_path):
            return FileType.MSI
        if self.exe_analyzer.can_analyze(file_path):
            return FileType.EXE
        raise UnsupportedFormatError(
            f"Unsupported installer type '{file_path.suffix or '(none)'}', expected .msi or .exe",
            path=file_path,
        )

    def extract(self, path) -> InstallerRecord:
        file_path = Path(path).resolve()
        file_type = self._file_type(file_path)
        logger.info(f"Extracting {file_type.value.upper()} metadata from {file_path}")

        if file_type is FileType.MSI:
            return self._extract_msi(file_path)
        return self._extract_exe(file_path)

    def _extract_msi(self, file_path: Path) -> InstallerRecord:
        props = self.msi_analyzer.analyze(file_path)
        name = props.get("ProductName")

        arch = _match_architecture(name, NAME_PATTERNS)
        if arch:
            logger.debug(f"Architecture {arch.value} from product name '{name}'")
        else:
            arch = _match_architecture(props.get("Template"), TEMPLATE_PATTERNS)
            if arch:
                logger.debug(f"Architecture {arch.value} from template '{props.get('Template')}'")

        product_code = props.get("ProductCode") or ""
        if not product_code:
            logger.warning(f"No ProductCode in the Property table of {file_path}")

        return InstallerRecord(
            file_path=str(file_path),
            file_type=FileType.MSI,
            vendor=props.get("Manufacturer"),
            name=name,
            version=props.get("ProductVersion"),
            architecture=self._or_default(arch, file_path),
            language=normalize_language(props.get("ProductLanguage"), self.locale_resolver),
            product_code=product_code,
        )

    def _extract_exe(self, file_path: Path) -> InstallerRecord:
        props = self.exe_analyzer.analyze(file_path)
        name = props.get("ProductName")

        arch = _match_architecture(name, NAME_PATTERNS)
        if arch:
            logger.debug(f"Architecture {arch.value} from product name '{name}'")
        else:
            arch = _match_architecture(file_path.stem, FILENAME_PATTERNS)
            if arch:
                logger.debug(f"Architecture {arch.value} from file name '{file_path.name}'")
            else:
                sniffed = detect_architecture_from_pe(file_path)
                if sniffed is not Architecture.UNKNOWN:
                    logger.debug(f"Architecture {sniffed.value} from PE header")
                    arch = sniffed

        return InstallerRecord(
            file_path=str(file_path),
            file_type=FileType.EXE,
            vendor=props.get("CompanyName"),
            name=name,
            version=props.get("ProductVersion"),
            architecture=self._or_default(arch, file_path),
            language=normalize_language(props.get("Language"), self.locale_resolver),
            product_code="",
        )

    def _or_default(self, arch: Optional[Architecture], file_path: Path) -> Architecture:
        if arch is not None:
            return arch
        logger.info(f"No architecture detected for {file_path.name}, assuming {self.default_architecture.value}")
        return self.default_architecture

    def extract_many(self, paths: Iterable) -> Iterator[Tuple[str, Optional[InstallerRecord], Optional[SetupInfoError]]]:
        """Extract each path in turn. Failing inputs are logged and yielded with their error."""
        for path in paths:
            try:
                yield str(path), self.extract(path), None
            except SetupInfoError as e:
                logger.error(f"Skipping {path}: {e}")
                yield str(path), None, e


def get_setup_file_information(path, **kwargs) -> InstallerRecord:
    """Convenience wrapper: ``SetupFileExtractor(**kwargs).extract(path)``."""
    return SetupFileExtractor(**kwargs).extract(path)
