import sys
import logging
import os
from typing import Any

from setupinfo.models import Architecture

logger = logging.getLogger(__name__)


class SetupInfoConfig:
    """
    Centralized configuration for SetupInfo.
    Handles precedence of settings:
    1. Environment (SETUPINFO_<NAME>, e.g. SETUPINFO_DEFAULTARCHITECTURE)
    2. Machine Policy (HKLM\\Software\\Policies\\SetupInfo) - Intune/GPO
    3. User Policy (HKCU\\Software\\Policies\\SetupInfo) - Intune/GPO
    4. User Preference (HKCU\\Software\\SetupInfo)
    5. Machine Preference (HKLM\\Software\\SetupInfo)
    """

    POLICY_PATH = r"Software\Policies\SetupInfo"
    PREFERENCE_PATH = r"Software\SetupInfo"
    ENV_PREFIX = "SETUPINFO_"

    @classmethod
    def get_value(cls, value_name: str, default: Any = None) -> Any:
        """
        Retrieves a setting respecting the precedence order.
        Returns 'default' if the value is not found in any location.
        """
        env_val = os.environ.get(f"{cls.ENV_PREFIX}{value_name.upper()}")
        if env_val:
            logger.debug(f"Config '{value_name}' found in environment: {env_val}")
            return env_val

        if sys.platform != 'win32':
            return default

        try:
            import winreg
        except ImportError:
            return default

        locations = [
            (winreg.HKEY_LOCAL_MACHINE, cls.POLICY_PATH, "HKLM Policy"),
            (winreg.HKEY_CURRENT_USER, cls.POLICY_PATH, "HKCU Policy"),
            (winreg.HKEY_CURRENT_USER, cls.PREFERENCE_PATH, "HKCU Preference"),
            (winreg.HKEY_LOCAL_MACHINE, cls.PREFERENCE_PATH, "HKLM Preference"),
        ]
        for root, sub_key, label in locations:
            val = cls._read_registry(root, sub_key, value_name)
            if val is not None:
                logger.debug(f"Config '{value_name}' found in {label}: {val}")
                return val

        return default

    @staticmethod
    def _read_registry(root_key, sub_key, value_name):
        try:
            import winreg
            with winreg.OpenKey(root_key, sub_key, 0, winreg.KEY_READ) as key:
                value, _ = winreg.QueryValueEx(key, value_name)
                return value
        except OSError:
            return None

    @classmethod
    def is_debug_mode(cls) -> bool:
        """Checks if debug mode is enabled via Command Line, Environment, or Registry (Policy/Pref)."""
        if '--debug' in sys.argv or '-d' in sys.argv:
            return True

        val = cls.get_value("Debug")
        if isinstance(val, str) and val.lower() in ('1', 'true', 'yes'):
            return True

        val = cls.get_value("DebugMode")
        if val is not None:
            return str(val).lower() in ('1', 'true', 'yes')

        return False

    @classmethod
    def get_default_architecture(cls) -> Architecture:
        """
        Architecture reported when no heuristic matches. Default: x64.
        Invalid values are ignored with a warning.
        """
        val = cls.get_value("DefaultArchitecture", Architecture.X64.value)
        try:
            return Architecture.parse(val)
        except ValueError:
            logger.warning(f"Ignoring invalid DefaultArchitecture '{val}', using x64")
            return Architecture.X64
