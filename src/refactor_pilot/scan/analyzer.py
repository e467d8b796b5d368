"""Lexical per-file metrics.

Metrics are line based and deliberately cheap: no parser is involved, so the
counts are approximations tuned for ranking files against each other rather
than exact language statistics.
"""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from pathlib import Path

from refactor_pilot.scan.constants import MAX_BYTES_PER_FILE, SOURCE_EXTENSIONS
from refactor_pilot.scan.models import FileInsight

_TODO_MARKER = re.compile(r"\b(?:TODO|FIXME|HACK|XXX)\b")
_TRAILING_TODO = re.compile(r"(?:#|//)\s*(?:TODO|FIXME|HACK|XXX)\b")
_SEPARATOR_BODY = re.compile(r"[-=*#/_~+.<>|\s]{3,}")
_COMMENTED_OUT_CODE = re.compile(
    r"(?:[;{}]\s*$)"
    r"|(?:^(?:const|let|var|import|export|return|def|class|function|fn|func|public|private)\s)"
    r"|(?:^(?:console\.\w+|print)\()",
)
_RESTATING_BODY = re.compile(
    r"^(?:(?:increment|decrement)s?\b|(?:sets?|gets?) the\b|getter\b|setter\b|constructor\b"
    r"|end (?:of )?(?:if|for|while|loop|function|class|method)\b)",
    re.IGNORECASE,
)
_BLOCK_DELIMITER_ONLY = re.compile(r"^(?:/\*+|\*+/|/\*+\s*\*+/|\*+)$")

_JS_FROM_IMPORT = re.compile(
    r"""^[ \t]*(?:import|export)\s[^'";]*?\bfrom\s*['"]([^'"]+)['"]""",
    re.MULTILINE,
)
_JS_BARE_IMPORT = re.compile(r"""^[ \t]*import\s*['"]([^'"]+)['"]""", re.MULTILINE)
_JS_CALL_IMPORT = re.compile(r"""\b(?:require|import)\(\s*['"]([^'"]+)['"]\s*\)""")
_JS_EXPORT = re.compile(r"^[ \t]*export\s+(?!\{)(?!\*)", re.MULTILINE)
_JS_EXPORT_STAR = re.compile(r"^[ \t]*export\s+\*", re.MULTILINE)
_JS_EXPORT_LIST = re.compile(r"^[ \t]*export\s+(?:type\s+)?\{([^}]*)\}", re.MULTILINE)
_JS_FUNCTION = re.compile(r"\bfunction\b[\s*]*[\w$]*\s*\(")
_JS_ARROW = re.compile(r"=>")
_JS_METHOD = re.compile(
    r"^[ \t]*(?:(?:public|private|protected|static|async|readonly|override|get|set)\s+)*"
    r"(?!(?:if|for|while|switch|catch|return|function|else)\b)[A-Za-z_$][\w$]*\s*"
    r"(?:<[^>]*>)?\([^)]*\)\s*(?::\s*[^={;]+)?\{",
    re.MULTILINE,
)
_JS_CLASS = re.compile(
    r"^[ \t]*(?:export\s+)?(?:default\s+)?(?:declare\s+)?(?:abstract\s+)?"
    r"(?:class|interface|enum)\s+[A-Za-z_$]",
    re.MULTILINE,
)

_PY_IMPORT = re.compile(r"^[ \t]*import[ \t]+([\w.]+(?:[ \t]*,[ \t]*[\w.]+)*)", re.MULTILINE)
_PY_FROM_IMPORT = re.compile(
    r"^[ \t]*from[ \t]+(\.*)([\w.]*)[ \t]+import[ \t]+(\([^)]*\)|[^\n]+)",
    re.MULTILINE,
)
_PY_FUNCTION = re.compile(r"^[ \t]*(?:async[ \t]+)?def[ \t]+\w+", re.MULTILINE)
_PY_CLASS = re.compile(r"^[ \t]*class[ \t]+\w+", re.MULTILINE)
_PY_PUBLIC_TOP_LEVEL = re.compile(
    r"^(?:async[ \t]+)?(?:def|class)[ \t]+([A-Za-z]\w*)",
    re.MULTILINE,
)
_PY_ALL = re.compile(r"^__all__\s*(?::[^=]+)?=\s*[\[(]([^\])]*)[\])]", re.MULTILINE)
_PY_STRING_LITERAL = re.compile(r"""['"]([^'"]+)['"]""")
_PY_TRIPLE_QUOTE = re.compile(r'"""|\'\'\'')
_LINE_COMMENT = re.compile(r"#[^\n]*")

_GO_IMPORT_SINGLE = re.compile(r'^[ \t]*import[ \t]+(?:\w+[ \t]+)?"([^"]+)"', re.MULTILINE)
_GO_IMPORT_BLOCK = re.compile(r"^[ \t]*import[ \t]*\(([^)]*)\)", re.MULTILINE)
_GO_QUOTED = re.compile(r'"([^"]+)"')
_GO_EXPORT = re.compile(
    r"^(?:func[ \t]+(?:\([^)]*\)[ \t]*)?|type[ \t]+|var[ \t]+|const[ \t]+)[A-Z]",
    re.MULTILINE,
)
_GO_FUNCTION = re.compile(r"^[ \t]*func\b", re.MULTILINE)
_GO_CLASS = re.compile(r"^[ \t]*type[ \t]+\w+[ \t]+(?:struct|interface)\b", re.MULTILINE)

_RUST_USE = re.compile(r"^[ \t]*(?:pub(?:\([^)]*\))?[ \t]+)?use[ \t]+([\w:]+)", re.MULTILINE)
_RUST_EXPORT = re.compile(
    r"^[ \t]*pub(?:\([^)]*\))?[ \t]+(?:async[ \t]+)?(?:fn|struct|enum|trait|type|const|static|mod|use)\b",  # noqa: E501
    re.MULTILINE,
)
_RUST_FUNCTION = re.compile(r"\bfn[ \t]+\w+")
_RUST_CLASS = re.compile(
    r"^[ \t]*(?:pub(?:\([^)]*\))?[ \t]+)?(?:struct|enum|trait)[ \t]+\w+",
    re.MULTILINE,
)

_JVM_IMPORT = re.compile(r"^[ \t]*(?:import|using)[ \t]+(?:static[ \t]+)?[\w.*]+", re.MULTILINE)
_JVM_EXPORT = re.compile(r"^[ \t]*(?:@\w+[ \t]+)*public\b", re.MULTILINE)
_JVM_METHOD = re.compile(
    r"^[ \t]*(?:(?:public|private|protected|internal|static|final|override|virtual|abstract"
    r"|async|synchronized|open|suspend)[ \t]+)+[\w<>\[\],.?]+[ \t]+\w+[ \t]*\(",
    re.MULTILINE,
)
_KOTLIN_FUNCTION = re.compile(r"\bfun[ \t]+[\w<>.]+[ \t]*\(")
_SWIFT_FUNCTION = re.compile(r"\bfunc[ \t]+\w+")
_SWIFT_IMPORT = re.compile(r"^[ \t]*import[ \t]+\w+", re.MULTILINE)
_TYPE_DECLARATION = re.compile(
    r"^[ \t]*(?:[\w@]+[ \t]+)*(?:class|interface|enum|struct|protocol|record|object)[ \t]+[A-Za-z_]",  # noqa: E501
    re.MULTILINE,
)

_JS_EXTENSIONS = frozenset({".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs"})


@dataclass(slots=True, frozen=True)
class ImportRef:
    """One import statement reduced to the module keys it may refer to.

    ``relative`` imports are internal by construction. Absolute Python imports
    become internal only when they resolve to a scanned module.
    """

    relative: bool
    candidates: tuple[str, ...] = ()
    fallback: str | None = None
    absolute_python: bool = False


@dataclass(slots=True, frozen=True)
class AnalyzedFile:
    """File insight plus the data needed for fan-in enrichment."""

    insight: FileInsight
    module_key: str
    imports: tuple[ImportRef, ...] = ()


@dataclass(slots=True)
class _SplitSource:
    code_lines: list[str]
    comment_lines: int
    low_signal_comment_lines: int
    todo_count: int


def extension_of(path: str) -> str:
    """Return the lowercase extension including the dot, or an empty string."""

    name = path.rsplit("/", 1)[-1].lower()
    dot_index = name.rfind(".")
    return "" if dot_index <= 0 else name[dot_index:]


def to_module_key(path: str) -> str:
    """Map a relative source path to the key other files import it by."""

    normalized = path.replace("\\", "/")
    extension = extension_of(normalized)
    if extension in SOURCE_EXTENSIONS:
        normalized = normalized[: -len(extension)]
    for suffix in ("/index", "/__init__"):
        if normalized.endswith(suffix):
            return normalized[: -len(suffix)]
    return normalized


def analyze_source_file(root: Path, absolute_path: Path) -> AnalyzedFile | None:
    """Compute metrics for one file, or ``None`` when it cannot be analyzed."""

    try:
        if absolute_path.stat().st_size > MAX_BYTES_PER_FILE:
            return None
        text = absolute_path.read_text("utf-8", errors="replace")
    except OSError:
        return None
    relative_path = absolute_path.relative_to(root).as_posix()
    return analyze_source_text(relative_path, text)


def analyze_source_text(path: str, text: str) -> AnalyzedFile:
    """Compute metrics for source ``text`` stored at relative ``path``."""

    extension = extension_of(path)
    lines = text.splitlines()
    if extension == ".py":
        split = _split_hash_comments(lines)
    else:
        split = _split_slash_comments(lines)
    code_text = "\n".join(split.code_lines)

    if extension == ".py":
        imports = _python_imports(path, code_text)
        exports = _python_exports(path, code_text, imports)
        functions = len(_PY_FUNCTION.findall(code_text))
        classes = len(_PY_CLASS.findall(code_text))
    elif extension in _JS_EXTENSIONS:
        imports = _js_imports(path, code_text)
        exports = _js_exports(code_text)
        functions = (
            len(_JS_FUNCTION.findall(code_text))
            + len(_JS_ARROW.findall(code_text))
            + len(_JS_METHOD.findall(code_text))
        )
        classes = len(_JS_CLASS.findall(code_text))
    elif extension == ".go":
        imports = _go_imports(code_text)
        exports = len(_GO_EXPORT.findall(code_text))
        functions = len(_GO_FUNCTION.findall(code_text))
        classes = len(_GO_CLASS.findall(code_text))
    elif extension == ".rs":
        imports = tuple(
            ImportRef(relative=spec.startswith(("crate::", "super::", "self::")))
            for spec in _RUST_USE.findall(code_text)
        )
        exports = len(_RUST_EXPORT.findall(code_text))
        functions = len(_RUST_FUNCTION.findall(code_text))
        classes = len(_RUST_CLASS.findall(code_text))
    elif extension == ".swift":
        imports = tuple(ImportRef(relative=False) for _ in _SWIFT_IMPORT.findall(code_text))
        exports = len(_JVM_EXPORT.findall(code_text))
        functions = len(_SWIFT_FUNCTION.findall(code_text))
        classes = len(_TYPE_DECLARATION.findall(code_text))
    else:
        imports = tuple(ImportRef(relative=False) for _ in _JVM_IMPORT.findall(code_text))
        exports = len(_JVM_EXPORT.findall(code_text))
        if extension in {".kt", ".kts"}:
            functions = len(_KOTLIN_FUNCTION.findall(code_text))
        else:
            functions = len(_JVM_METHOD.findall(code_text))
        classes = len(_TYPE_DECLARATION.findall(code_text))

    insight = FileInsight(
        path=path,
        line_count=len(lines),
        comment_lines=split.comment_lines,
        low_signal_comment_lines=split.low_signal_comment_lines,
        todo_count=split.todo_count,
        import_count=len(imports),
        internal_import_count=sum(1 for ref in imports if ref.relative),
        export_count=exports,
        function_count=functions,
        class_count=classes,
    )
    return AnalyzedFile(insight=insight, module_key=to_module_key(path), imports=imports)


def is_low_signal_comment(body: str) -> bool:
    """Return True for comment text that carries no information."""

    stripped = body.strip()
    if not stripped:
        return True
    if _TODO_MARKER.search(stripped):
        return False
    if _SEPARATOR_BODY.fullmatch(stripped):
        return True
    if _COMMENTED_OUT_CODE.search(stripped):
        return True
    if _RESTATING_BODY.search(stripped):
        return True
    return len(stripped.split()) < 3


def _split_hash_comments(lines: list[str]) -> _SplitSource:
    code_lines: list[str] = []
    comments = low_signal = todos = 0
    in_string = False
    for index, line in enumerate(lines):
        stripped = line.strip()
        quotes = len(_PY_TRIPLE_QUOTE.findall(line))
        if in_string:
            if quotes % 2 == 1:
                in_string = False
            continue
        if stripped.startswith("#"):
            if index == 0 and stripped.startswith("#!"):
                continue
            body = stripped.lstrip("#")
            comments += 1
            if _TODO_MARKER.search(body):
                todos += 1
            elif is_low_signal_comment(body):
                low_signal += 1
            continue
        if quotes % 2 == 1:
            in_string = True
        if _TRAILING_TODO.search(line):
            todos += 1
        code_lines.append(line)
    return _SplitSource(code_lines, comments, low_signal, todos)


def _split_slash_comments(lines: list[str]) -> _SplitSource:
    code_lines: list[str] = []
    comments = low_signal = todos = 0
    in_block = False
    for line in lines:
        stripped = line.strip()
        if in_block or stripped.startswith("/*"):
            if "*/" in stripped:
                in_block = False
                closing = stripped.index("*/")
                trailing = stripped[closing + 2 :].strip()
                stripped = stripped[: closing + 2]
                if trailing:
                    code_lines.append(trailing)
            else:
                in_block = True
            if _BLOCK_DELIMITER_ONLY.fullmatch(stripped):
                continue
            body = stripped.removeprefix("/*").removesuffix("*/").lstrip("*")
        elif stripped.startswith("//"):
            body = stripped.lstrip("/")
        else:
            if _TRAILING_TODO.search(line):
                todos += 1
            code_lines.append(line)
            continue
        comments += 1
        if _TODO_MARKER.search(body):
            todos += 1
        elif is_low_signal_comment(body):
            low_signal += 1
    return _SplitSource(code_lines, comments, low_signal, todos)


def _js_imports(path: str, code_text: str) -> tuple[ImportRef, ...]:
    specifiers = [
        *_JS_FROM_IMPORT.findall(code_text),
        *_JS_BARE_IMPORT.findall(code_text),
        *_JS_CALL_IMPORT.findall(code_text),
    ]
    base_dir = posixpath.dirname(path)
    refs: list[ImportRef] = []
    for specifier in specifiers:
        if not specifier.startswith("."):
            refs.append(ImportRef(relative=False))
            continue
        target = posixpath.normpath(posixpath.join(base_dir, specifier))
        refs.append(ImportRef(relative=True, candidates=(to_module_key(target),)))
    return tuple(refs)


def _js_exports(code_text: str) -> int:
    count = len(_JS_EXPORT.findall(code_text)) + len(_JS_EXPORT_STAR.findall(code_text))
    for names in _JS_EXPORT_LIST.findall(code_text):
        count += sum(1 for name in names.split(",") if name.strip())
    return count


def _python_imports(path: str, code_text: str) -> tuple[ImportRef, ...]:
    refs: list[ImportRef] = []
    for modules in _PY_IMPORT.findall(code_text):
        for module in modules.split(","):
            dotted = module.strip()
            if not dotted:
                continue
            key = dotted.replace(".", "/")
            fallback = key.split("/", 1)[0] if "/" in key else None
            refs.append(
                ImportRef(
                    relative=False,
                    candidates=(key,),
                    fallback=fallback,
                    absolute_python=True,
                ),
            )

    package_dir = posixpath.dirname(path)
    for dots, module, names_raw in _PY_FROM_IMPORT.findall(code_text):
        names = _imported_names(names_raw)
        module_path = module.replace(".", "/")
        if not dots:
            refs.append(
                ImportRef(
                    relative=False,
                    candidates=tuple(f"{module_path}/{name}" for name in names),
                    fallback=module_path,
                    absolute_python=True,
                ),
            )
            continue
        base = package_dir
        for _ in range(len(dots) - 1):
            base = posixpath.dirname(base)
        anchor = posixpath.join(base, module_path) if module_path else base
        refs.append(
            ImportRef(
                relative=True,
                candidates=tuple(posixpath.join(anchor, name) for name in names),
                fallback=anchor,
            ),
        )
    return tuple(refs)


def _imported_names(raw: str) -> tuple[str, ...]:
    cleaned = _LINE_COMMENT.sub("", raw).strip().strip("()")
    names: list[str] = []
    for part in cleaned.replace("\n", ",").split(","):
        token = part.strip().split(" as ", 1)[0].strip()
        if token and token != "*" and token.isidentifier():
            names.append(token)
    return tuple(names)


def _python_exports(path: str, code_text: str, imports: tuple[ImportRef, ...]) -> int:
    declared_all = _PY_ALL.search(code_text)
    if declared_all is not None:
        return len(_PY_STRING_LITERAL.findall(declared_all.group(1)))
    public = len(_PY_PUBLIC_TOP_LEVEL.findall(code_text))
    if path.endswith("__init__.py"):
        public += sum(len(ref.candidates) for ref in imports if ref.relative)
    return public


def _go_imports(code_text: str) -> tuple[ImportRef, ...]:
    specifiers = list(_GO_IMPORT_SINGLE.findall(code_text))
    for block in _GO_IMPORT_BLOCK.findall(code_text):
        specifiers.extend(_GO_QUOTED.findall(block))
    return tuple(ImportRef(relative=spec.startswith(".")) for spec in specifiers)
