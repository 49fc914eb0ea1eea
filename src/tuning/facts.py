# facts.py
# Machine identity values available to templates and `when` expressions.
# Everything here is computed once at process start; the only later writes
# are memoized executable lookups, which are idempotent.

from __future__ import annotations

import os
import shutil
import sys
import threading
from pathlib import Path, PurePath
from typing import Any, Dict, Optional

from .errors import FactsError


def current_os() -> str:
    """
    Return the OS tag used by `os` requirements and the is_os_* facts.

    Returns:
        "linux", "macos", "windows", or the raw sys.platform value for
        anything else.
    """
    if sys.platform.startswith("linux"):
        return "linux"
    if sys.platform == "darwin":
        return "macos"
    if sys.platform in ("win32", "cygwin"):
        return "windows"
    return sys.platform


def _env_dir(name: str) -> Optional[Path]:
    value = os.environ.get(name)
    # XDG says relative paths must be ignored
    if value and os.path.isabs(value):
        return Path(value)
    return None


def config_dir(os_name: str, home: Path) -> Path:
    """
    Return the user's base configuration directory for the given OS.

    Linux honors XDG_CONFIG_HOME, macOS uses ~/Library/Application Support,
    Windows uses %APPDATA%.
    """
    if os_name == "windows":
        d = _env_dir("APPDATA")
        if d is None:
            raise FactsError("unable to find config_dir (APPDATA is not set)")
        return d
    if os_name == "macos":
        return home / "Library" / "Application Support"
    return _env_dir("XDG_CONFIG_HOME") or home / ".config"


def cache_dir(os_name: str, home: Path) -> Path:
    """
    Return the user's base cache directory for the given OS.

    Linux honors XDG_CACHE_HOME, macOS uses ~/Library/Caches,
    Windows uses %LOCALAPPDATA%.
    """
    if os_name == "windows":
        d = _env_dir("LOCALAPPDATA")
        if d is None:
            raise FactsError("unable to find cache_dir (LOCALAPPDATA is not set)")
        return d
    if os_name == "macos":
        return home / "Library" / "Caches"
    return _env_dir("XDG_CACHE_HOME") or home / ".cache"


class Facts:
    """
    Read-only machine facts.

    Construct directly in tests (any PurePath works, including
    PureWindowsPath) or call Facts.gather() once at process start.
    """

    def __init__(
        self,
        *,
        cache_dir: PurePath,
        config_dir: PurePath,
        home_dir: PurePath,
        os_name: str,
        search_path: Optional[str] = None,
    ):
        self._cache_dir = cache_dir
        self._config_dir = config_dir
        self._home_dir = home_dir
        self._os_name = os_name
        self._search_path = search_path
        self._executables: Dict[str, bool] = {}
        self._lock = threading.Lock()

    @classmethod
    def gather(cls, os_name: Optional[str] = None, search_path: Optional[str] = None) -> "Facts":
        """
        Compute facts for the running machine.

        Args:
            os_name: Override the detected OS tag.
            search_path: PATH-style string used by has_executable
                         (defaults to the PATH environment variable).

        Raises:
            FactsError: if a well-known directory cannot be determined.
        """
        os_name = os_name or current_os()
        try:
            home = Path.home()
        except RuntimeError as e:
            raise FactsError(f"unable to find home_dir: {e}") from e

        return cls(
            cache_dir=cache_dir(os_name, home),
            config_dir=config_dir(os_name, home),
            home_dir=home,
            os_name=os_name,
            search_path=search_path if search_path is not None else os.environ.get("PATH", ""),
        )

    # ---- directories ----
    @property
    def cache_dir(self) -> PurePath:
        return self._cache_dir

    @property
    def config_dir(self) -> PurePath:
        return self._config_dir

    @property
    def home_dir(self) -> PurePath:
        return self._home_dir

    # ---- OS identity ----
    @property
    def os_name(self) -> str:
        return self._os_name

    @property
    def is_os_linux(self) -> bool:
        return self._os_name == "linux"

    @property
    def is_os_macos(self) -> bool:
        return self._os_name == "macos"

    @property
    def is_os_windows(self) -> bool:
        return self._os_name == "windows"

    # ---- executables ----
    def has_executable(self, exe: str) -> bool:
        """
        Return True if `exe` is found on the search path.

        Results are memoized per name; only the store is locked.
        """
        with self._lock:
            if exe in self._executables:
                return self._executables[exe]

        found = shutil.which(exe, path=self._search_path) is not None

        with self._lock:
            self._executables.setdefault(exe, found)
            return self._executables[exe]

    def as_context(self) -> Dict[str, Any]:
        """Template namespace: every fact plus the has_executable function."""
        return {
            "cache_dir": self.cache_dir,
            "config_dir": self.config_dir,
            "home_dir": self.home_dir,
            "is_os_linux": self.is_os_linux,
            "is_os_macos": self.is_os_macos,
            "is_os_windows": self.is_os_windows,
            "has_executable": self.has_executable,
        }

    def __repr__(self) -> str:
        return (
            f"Facts(os_name={self._os_name!r}, home_dir={str(self._home_dir)!r}, "
            f"config_dir={str(self._config_dir)!r}, cache_dir={str(self._cache_dir)!r})"
        )
