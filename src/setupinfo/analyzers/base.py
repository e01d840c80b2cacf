from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional


class BaseAnalyzer(ABC):
    extension = ""

    def can_analyze(self, file_path: Path) -> bool:
        """Determine if this analyzer can handle the given file."""
        if not file_path.exists():
            return False
        return file_path.suffix.lower() == self.extension

    @abstractmethod
    def analyze(self, file_path: Path) -> Dict[str, Optional[str]]:
        """Read the raw metadata of the file as a property map."""
        pass
