from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, Optional, Tuple


class FileType(str, Enum):
    MSI = "msi"
    EXE = "exe"


class Architecture(str, Enum):
    X86 = "x86"
    X64 = "x64"
    ARM64 = "ARM64"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: str) -> "Architecture":
        """Case-insensitive lookup by value, e.g. 'arm64' -> ARM64."""
        for member in cls:
            if member.value.lower() == str(value).strip().lower():
                return member
        raise ValueError(f"Unknown architecture: {value!r}")


@dataclass(frozen=True)
class InstallerRecord:
    """Normalized metadata of a single installer file.

    ``product_code`` is only meaningful for MSI databases and is always the
    empty string for executables. An MSI whose Property table lacks a
    ProductCode also ends up with "" (a warning is logged), so an empty
    product code does not by itself mean the record came from an EXE.
    """
    file_path: str
    file_type: FileType
    vendor: Optional[str] = None
    name: Optional[str] = None
    version: Optional[str] = None
    architecture: Architecture = Architecture.UNKNOWN
    language: Optional[str] = None
    product_code: str = ""

    def __post_init__(self):
        if self.file_type is FileType.EXE and self.product_code != "":
            raise ValueError("EXE records cannot carry a ProductCode")
        if self.file_type is FileType.MSI and self.product_code is None:
            object.__setattr__(self, "product_code", "")

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "FilePath": self.file_path,
            "FileType": self.file_type.value,
            "Vendor": self.vendor,
            "Name": self.name,
            "Version": self.version,
            "Architecture": self.architecture.value,
            "Language": self.language,
            "ProductCode": self.product_code,
        }

    def __str__(self):
        return (
            f"Installer: {self.name} {self.version}\n"
            f"Type: {self.file_type.value.upper()}\n"
            f"Vendor: {self.vendor}\n"
            f"Architecture: {self.architecture.value}"
        )


# Property table fetch results. Callers pick the shape explicitly instead of
# having it inferred from how many names they passed.

@dataclass(frozen=True)
class SingleProperty:
    key: str
    value: str


@dataclass(frozen=True)
class PropertyNotFound:
    key: str


@dataclass(frozen=True)
class AggregateProperties:
    values: Dict[str, Optional[str]] = field(default_factory=dict)

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)


@dataclass
class PropertyStream:
    pairs: Iterator[Tuple[str, str]]

    def __iter__(self):
        return iter(self.pairs)
