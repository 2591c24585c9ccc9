"""
Sandbox policy definitions: the static deny-list and the runtime guards.

The deny-list is an ordered table of ``SafetyRule`` entries. Extending the
gate means appending a rule here; ``sandbox.gate`` evaluates the table
uniformly and never special-cases individual rules.
"""

from __future__ import annotations

import builtins
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from types import ModuleType
from typing import cast

from sandbox.taxonomy import SANDBOX_IMPORT_MARKER, SandboxImportError

CAPABILITY_FILESYSTEM = "filesystem"
CAPABILITY_NETWORK = "network"
CAPABILITY_PROCESS = "process"
CAPABILITY_DYNAMIC_CODE = "dynamic_code"
CAPABILITY_CONCURRENCY = "concurrency"
CAPABILITY_SHELL = "shell"
CAPABILITY_INTROSPECTION = "introspection"


@dataclass(frozen=True)
class SafetyRule:
    name: str
    capability: str
    pattern: re.Pattern[str]

    def matches(self, source: str) -> bool:
        return self.pattern.search(source) is not None


def _rule(name: str, capability: str, regex: str) -> SafetyRule:
    return SafetyRule(name=name, capability=capability, pattern=re.compile(regex, re.MULTILINE))


def _import_rule(name: str, capability: str, modules: Sequence[str]) -> SafetyRule:
    alternatives = "|".join(re.escape(module) for module in modules)
    # `import a, b`, `from a import b`, `from a.b import c`, on a single line
    regex = rf"\b(?:import|from)\s+(?:[\w.]+\s*,\s*)*(?:{alternatives})\b"
    return _rule(name, capability, regex)


FILESYSTEM_MODULES = [
    "os", "posix", "nt", "pathlib", "shutil", "io", "tempfile", "glob", "fileinput",
    "sqlite3", "dbm", "shelve", "pickle", "marshal", "zipfile", "tarfile", "gzip",
    "bz2", "lzma", "mmap", "linecache",
]
NETWORK_MODULES = [
    "socket", "socketserver", "ssl", "http", "urllib", "urllib3", "requests", "httpx",
    "aiohttp", "ftplib", "smtplib", "poplib", "imaplib", "telnetlib", "xmlrpc",
    "webbrowser", "select", "selectors",
]
PROCESS_MODULES = [
    "subprocess", "multiprocessing", "signal", "pty", "resource", "ctypes", "cffi", "sys",
    "platform", "faulthandler",
]
DYNAMIC_CODE_MODULES = [
    "importlib", "imp", "pkgutil", "zipimport", "runpy", "code", "codeop", "builtins",
    "inspect", "gc", "types",
]
CONCURRENCY_MODULES = ["threading", "_thread", "asyncio", "concurrent", "sched"]

DENY_RULES: tuple[SafetyRule, ...] = (
    # Filesystem access
    _import_rule("filesystem-import", CAPABILITY_FILESYSTEM, FILESYSTEM_MODULES),
    _rule("open-call", CAPABILITY_FILESYSTEM, r"(?<![.\w])open\s*\("),
    _rule("os-attribute", CAPABILITY_FILESYSTEM, r"\b_?os\s*\."),
    # Network access
    _import_rule("network-import", CAPABILITY_NETWORK, NETWORK_MODULES),
    # Process and OS spawning
    _import_rule("process-import", CAPABILITY_PROCESS, PROCESS_MODULES),
    _rule("sys-attribute", CAPABILITY_PROCESS, r"\bsys\s*\."),
    _rule("fork-call", CAPABILITY_PROCESS, r"\.(?:fork|forkpty|kill|killpg)\s*\("),
    # Dynamic code loading and evaluation
    _import_rule("dynamic-code-import", CAPABILITY_DYNAMIC_CODE, DYNAMIC_CODE_MODULES),
    _rule(
        "dynamic-eval-call",
        CAPABILITY_DYNAMIC_CODE,
        r"(?<![.\w])(?:eval|exec|compile|__import__|breakpoint|globals|locals|vars|"
        r"getattr|setattr|delattr)\s*\(",
    ),
    # Concurrent workers and shared registries
    _import_rule("concurrency-import", CAPABILITY_CONCURRENCY, CONCURRENCY_MODULES),
    # Shell and command execution
    _rule(
        "shell-call",
        CAPABILITY_SHELL,
        r"\.(?:system|popen|exec[lv]p?e?|spawn[lv]p?e?|posix_spawnp?|startfile)\s*\(",
    ),
    # Interpreter escapes that lead back to the builtins or loaded modules
    _rule(
        "dunder-escape",
        CAPABILITY_INTROSPECTION,
        r"__(?:import|builtins|builtin|subclasses|globals|code|closure|bases|base|mro|"
        r"getattribute|loader|spec|reduce|reduce_ex|self|func)__",
    ),
    # Allowlisted modules re-export sys/os (`typing.sys`, `random._os`)
    _rule(
        "module-escape",
        CAPABILITY_INTROSPECTION,
        r"(?:\.\s*|\bimport\s+)_?(?:sys|os|modules)\b",
    ),
    _rule(
        "frame-escape",
        CAPABILITY_INTROSPECTION,
        r"\.(?:f_globals|f_locals|f_builtins|f_back|gi_frame|cr_frame|ag_frame|tb_frame|co_code)\b",
    ),
)

BLOCKED_MODULES = sorted(
    set(FILESYSTEM_MODULES)
    | set(NETWORK_MODULES)
    | set(PROCESS_MODULES)
    | set(DYNAMIC_CODE_MODULES)
    | set(CONCURRENCY_MODULES)
)

ALLOWED_MODULES = [
    "math",
    "cmath",
    "random",
    "itertools",
    "functools",
    "collections",
    "typing",
    "dataclasses",
    "string",
    "re",
    "statistics",
    "decimal",
    "fractions",
    "datetime",
    "time",
    "operator",
    "heapq",
    "bisect",
    "json",
    "textwrap",
    "enum",
    "copy",
    "numbers",
    "abc",
    "calendar",
    "array",
    "pprint",
]

BLOCKED_BUILTINS = [
    "open",
    "eval",
    "exec",
    "compile",
    "input",
    "breakpoint",
    "globals",
    "locals",
    "vars",
    "getattr",
    "setattr",
    "delattr",
    "exit",
    "quit",
    "help",
    "memoryview",
    "copyright",
    "credits",
    "license",
]

ImportHook = Callable[
    [str, dict[str, object] | None, dict[str, object] | None, Sequence[str], int], ModuleType
]


def _normalize_modules(modules: Iterable[str] | None) -> set[str]:
    return {name for name in (modules or [])}


def build_import_guard(
    allowed_modules: Iterable[str] | None = None,
    blocked_modules: Iterable[str] | None = None,
) -> ImportHook:
    """
    Build a restricted __import__ hook that only allows allowlisted modules
    and explicitly blocks denied modules.

    Imports resolve to views of the real modules: public names only, with
    nested modules kept when they are allowlisted too and dropped otherwise.
    """
    allowed = _normalize_modules(allowed_modules or ALLOWED_MODULES)
    blocked = _normalize_modules(blocked_modules or BLOCKED_MODULES)
    original_import = cast(ImportHook, builtins.__import__)
    views: dict[str, ModuleType] = {}

    def view_of(module: ModuleType, synced: set[str]) -> ModuleType:
        name = module.__name__
        view = views.get(name)
        if view is None:
            view = views[name] = ModuleType(name, module.__doc__)
        if name in synced:
            return view
        synced.add(name)
        for attr, value in vars(module).items():
            if attr.startswith("_"):
                continue
            if isinstance(value, ModuleType):
                if value.__name__.split(".")[0] not in allowed:
                    continue
                value = view_of(value, synced)
            setattr(view, attr, value)
        exported = getattr(module, "__all__", None)
        if exported is not None:
            setattr(view, "__all__", [attr for attr in exported if hasattr(view, attr)])
        return view

    def guarded_import(
        name: str,
        globals: dict[str, object] | None = None,
        locals: dict[str, object] | None = None,
        fromlist: Sequence[str] = (),
        level: int = 0,
    ) -> ModuleType:
        if level:
            raise SandboxImportError(f"Relative import of '{name}' {SANDBOX_IMPORT_MARKER}")
        root = name.split(".")[0]
        if root in blocked or name in blocked:
            raise SandboxImportError(f"Import of '{root}' {SANDBOX_IMPORT_MARKER}")
        if root not in allowed:
            raise SandboxImportError(f"Import of '{root}' is not allowlisted ({SANDBOX_IMPORT_MARKER})")
        return view_of(original_import(name, globals, locals, fromlist, level), set())

    return guarded_import


def build_restricted_builtins(
    print_fn: Callable[..., None],
    allowed_modules: Iterable[str] | None = None,
    blocked_names: Iterable[str] | None = None,
) -> dict[str, object]:
    """Return a builtins mapping for one user namespace.

    The real ``builtins`` module is left untouched: only code compiled into the
    namespace that receives this mapping sees the guard, the injected ``print``
    and the missing names.
    """
    blocked = _normalize_modules(blocked_names or BLOCKED_BUILTINS)
    restricted = {
        name: value for name, value in vars(builtins).items() if name not in blocked
    }
    restricted["__import__"] = build_import_guard(allowed_modules=allowed_modules)
    restricted["print"] = print_fn
    return restricted
