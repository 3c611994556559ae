"""Per-module verbose logging levels driven by a ``--vmodule`` style spec."""

from __future__ import annotations

import logging
import re
import sys
import threading
from dataclasses import dataclass, field

__all__ = ["SiteFlag", "VModuleRegistry", "safe_fnmatch", "module_base_name"]

_log = logging.getLogger(__name__)

_LEVEL_RE = re.compile(r"=[ \t\n\r\f\v]*([+-]?[0-9]+)")


def safe_fnmatch(pattern: str, string: str) -> bool:
    """Match ``string`` against ``pattern`` supporting only ``*`` and ``?``."""
    p = s = 0
    plen, slen = len(pattern), len(string)
    while True:
        if p == plen and s == slen:
            return True
        if p == plen:
            return False
        if s == slen:
            return p + 1 == plen and pattern[p] == "*"
        if pattern[p] == string[s] or pattern[p] == "?":
            p += 1
            s += 1
            continue
        if pattern[p] == "*":
            if p + 1 == plen:
                return True
            rest = pattern[p + 1:]
            return any(safe_fnmatch(rest, string[i:]) for i in range(s, slen))
        return False


def module_base_name(fname: str) -> str:
    """Return the module name of a source path: no directory, no extension, no ``-inl``."""
    slash = fname.rfind("/")
    if slash < 0 and sys.platform == "win32":
        slash = fname.rfind("\\")
    base = fname[slash + 1:]
    dot = base.find(".")
    if dot >= 0:
        base = base[:dot]
    if base.endswith("-inl"):
        base = base[:-4]
    return base


class _Level:
    """A shared, mutable verbosity level."""

    __slots__ = ("value",)

    def __init__(self, value: int) -> None:
        self.value = value

    def __repr__(self) -> str:
        return f"_Level({self.value})"


@dataclass
class _ModuleInfo:
    pattern: str
    level: _Level


@dataclass(eq=False)
class SiteFlag:
    """Cached state of one verbose-logging call site."""

    level: _Level | None = None
    base_name: str | None = None


def _parse_vmodule(spec: str) -> list[_ModuleInfo]:
    entries: list[_ModuleInfo] = []
    pos = 0
    while True:
        sep = spec.find("=", pos)
        if sep < 0:
            break
        pattern = spec[pos:sep]
        match = _LEVEL_RE.match(spec, sep)
        if match:
            entries.append(_ModuleInfo(pattern, _Level(int(match.group(1)))))
        comma = spec.find(",", sep)
        if comma < 0:
            break
        pos = comma + 1
    return entries


@dataclass(eq=False)
class VModuleRegistry:
    """Maps module patterns to verbose levels and caches per-site lookups."""

    vmodule: str = ""
    default_level: int = 0
    _default: _Level = field(init=False, repr=False)
    _modules: list[_ModuleInfo] = field(init=False, default_factory=list, repr=False)
    _cached_sites: list[SiteFlag] = field(init=False, default_factory=list, repr=False)
    _inited: bool = field(init=False, default=False, repr=False)
    _lock: threading.Lock = field(init=False, default_factory=threading.Lock, repr=False)

    def __init__(self, vmodule: str = "", default_level: int = 0) -> None:
        self.vmodule = vmodule
        self._default = _Level(default_level)
        self._modules = []
        self._cached_sites = []
        self._inited = False
        self._lock = threading.Lock()

    @property
    def default_level(self) -> int:  # type: ignore[override]
        return self._default.value

    @default_level.setter
    def default_level(self, value: int) -> None:
        self._default.value = value

    def _initialize(self) -> None:
        self._inited = False
        self._modules[:0] = _parse_vmodule(self.vmodule)
        self._inited = True

    def set_vlog_level(self, module_pattern: str, log_level: int) -> int:
        """Set the level for ``module_pattern``; return the level it had before."""
        result = self._default.value
        found = False
        with self._lock:
            for info in self._modules:
                if info.pattern == module_pattern:
                    if not found:
                        result = info.level.value
                        found = True
                    info.level.value = log_level
                elif not found and safe_fnmatch(info.pattern, module_pattern):
                    result = info.level.value
                    found = True
            if not found:
                info = _ModuleInfo(module_pattern, _Level(log_level))
                self._modules.insert(0, info)
                remaining = []
                for site in self._cached_sites:
                    if safe_fnmatch(module_pattern, site.base_name or ""):
                        site.level = info.level
                    else:
                        remaining.append(site)
                self._cached_sites = remaining
        _log.debug('Set VLOG level for "%s" to %d', module_pattern, log_level)
        return result

    def init_vlog_site(self, site_flag: SiteFlag, fname: str, verbose_level: int) -> bool:
        """Resolve the level for a call site and report whether it is enabled."""
        with self._lock:
            read_vmodule_flag = self._inited
            if not read_vmodule_flag:
                self._initialize()

            site_level = self._default
            base = module_base_name(fname)
            for info in self._modules:
                if safe_fnmatch(info.pattern, base):
                    site_level = info.level
                    break

            if read_vmodule_flag:
                site_flag.level = site_level
                if site_level is self._default and not site_flag.base_name:
                    site_flag.base_name = base
                    self._cached_sites.insert(0, site_flag)

            return site_level.value >= verbose_level

    def vlog_is_on(self, site_flag: SiteFlag, fname: str, verbose_level: int) -> bool:
        """Report whether verbose logging at ``verbose_level`` is on for a site."""
        if site_flag.level is not None:
            return site_flag.level.value >= verbose_level
        return self.init_vlog_site(site_flag, fname, verbose_level)