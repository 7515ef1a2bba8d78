"""
The compilation chain.

Each accepted snippet becomes a `CompilationUnit` that points at the unit
before it. Compiling a snippet resolves its names against everything the
chain has declared so far, generates code for it and loads the result into
a `CodeSpace`, where the execution host finds it by unit identity.
"""
import ast
import builtins
import contextlib
import inspect
import io
import linecache
import logging
import secrets
import tokenize
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional

from snip.snip_config import SessionConfig
from snip.snip_datatypes import (
    Diagnostic, Severity, EntryPoint, EntryPointNotFound, EmitError, NO_VALUE,
)
from snip.snip_diagnostics import from_syntax_error, from_warning, has_errors, non_blocking
from snip.snip_references import ReferenceSet

logger = logging.getLogger(__name__)

BUILTIN_NAMES = frozenset(dir(builtins))

ENTRY_NAMESPACE = "snip.submissions"


# ===================================================================
# 1. Compilation units
# ===================================================================

@dataclass(frozen=True, eq=False)
class CompilationUnit:
    """An immutable snapshot of the program so far: a snippet and its predecessors."""
    index: int
    unit_id: str
    source: str
    filename: str
    entry: EntryPoint
    declared: frozenset
    symbols: frozenset
    previous: Optional['CompilationUnit'] = field(default=None, repr=False)
    references: ReferenceSet = field(default_factory=ReferenceSet, repr=False)
    diagnostics: tuple = ()

    def chain(self) -> Iterator['CompilationUnit']:
        """Iterates the chain from the first unit to this one."""
        units = []
        unit = self
        while unit is not None:
            units.append(unit)
            unit = unit.previous
        return reversed(units)

    def sources(self) -> List[str]:
        return [u.source for u in self.chain()]

    def __len__(self) -> int:
        return self.index + 1


@dataclass
class CompileResult:
    unit: Optional[CompilationUnit] = None
    diagnostics: List[Diagnostic] = field(default_factory=list)
    emit_error: Optional[EmitError] = None

    @property
    def success(self) -> bool:
        return self.unit is not None


# ===================================================================
# 2. Loaded submissions and the code space
# ===================================================================

class Submission:
    """The generated top-level routine of one unit.

    `body` holds every statement; `tail` holds the trailing expression
    whose value is the submission's result, if there is one.
    """
    def __init__(self, unit_id: str, body, tail=None):
        self.unit_id = unit_id
        self.body = body
        self.tail = tail

    async def invoke(self, state) -> Any:
        namespace = state.namespace
        ret = eval(self.body, namespace)
        if self.body.co_flags & inspect.CO_COROUTINE:
            await ret
        if self.tail is None:
            return NO_VALUE
        value = eval(self.tail, namespace)
        if self.tail.co_flags & inspect.CO_COROUTINE:
            value = await value
        return NO_VALUE if value is None else value

    def __repr__(self) -> str:
        return f"<Submission {self.unit_id}>"


class CodeSpace:
    """Lookup table of loaded submissions keyed by unit identity."""

    def __init__(self):
        self._entries: Dict[str, Submission] = {}
        self._sources: Dict[str, str] = {}

    def load(self, unit: CompilationUnit, submission: Submission):
        self._entries[unit.unit_id] = submission
        self._sources[unit.filename] = unit.source
        # Let standard tracebacks show submission source lines.
        linecache.cache[unit.filename] = (
            len(unit.source), None, unit.source.splitlines(True), unit.filename
        )

    def resolve(self, unit_id: str) -> Submission:
        try:
            return self._entries[unit_id]
        except KeyError:
            raise EntryPointNotFound(unit_id) from None

    def unload(self, unit_id: str):
        self._entries.pop(unit_id, None)

    def source_for(self, filename: str) -> Optional[str]:
        return self._sources.get(filename)

    def __contains__(self, unit_id) -> bool:
        return unit_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


# ===================================================================
# 3. Name analysis
# ===================================================================

class _ScopeWalker(ast.NodeVisitor):
    """Collects the names a snippet binds and the names its top level reads.

    Only the module-level scope is checked for reads; function, lambda and
    class bodies resolve their names late and are skipped.
    """
    def __init__(self):
        self.bound: set = set()
        self.declared: set = set()
        self.loads: List[ast.Name] = []
        self.star_import = False

    def _bind(self, name: str, export: bool = True):
        self.bound.add(name)
        if export:
            self.declared.add(name)

    def _collect_globals(self, node):
        for sub in ast.walk(node):
            if isinstance(sub, ast.Global):
                for name in sub.names:
                    self._bind(name)

    def visit_Name(self, node: ast.Name):
        if isinstance(node.ctx, ast.Store):
            self._bind(node.id)
        else:
            self.loads.append(node)

    def visit_NamedExpr(self, node: ast.NamedExpr):
        self._bind(node.target.id)
        self.visit(node.value)

    def _bind_type_params(self, node):
        # PEP 695 parameters are scoped to the definition.
        for param in getattr(node, "type_params", ()):
            self._bind(param.name, export=False)

    def _visit_function(self, node):
        self._bind(node.name)
        self._bind_type_params(node)
        for deco in node.decorator_list:
            self.visit(deco)
        self._visit_arguments(node.args)
        self._collect_globals(node)

    visit_FunctionDef = _visit_function
    visit_AsyncFunctionDef = _visit_function

    def _visit_arguments(self, args: ast.arguments):
        for default in args.defaults:
            self.visit(default)
        for default in args.kw_defaults:
            if default is not None:
                self.visit(default)

    def visit_Lambda(self, node: ast.Lambda):
        self._visit_arguments(node.args)

    def visit_ClassDef(self, node: ast.ClassDef):
        self._bind(node.name)
        self._bind_type_params(node)
        for deco in node.decorator_list:
            self.visit(deco)
        for base in node.bases:
            self.visit(base)
        for kw in node.keywords:
            self.visit(kw.value)
        self._collect_globals(node)

    def visit_AnnAssign(self, node: ast.AnnAssign):
        # Annotations may be evaluated lazily; a bare `x: int` binds nothing.
        if node.value is not None:
            self.visit(node.target)
            self.visit(node.value)

    def visit_TypeAlias(self, node):
        self._bind(node.name.id)

    def _visit_import(self, node):
        for alias in node.names:
            if alias.name == "*":
                self.star_import = True
                continue
            if alias.asname:
                self._bind(alias.asname)
            elif isinstance(node, ast.Import):
                self._bind(alias.name.split('.')[0])
            else:
                self._bind(alias.name)

    visit_Import = _visit_import
    visit_ImportFrom = _visit_import

    def visit_ExceptHandler(self, node: ast.ExceptHandler):
        if node.name:
            # Python unbinds the name when the handler exits.
            self._bind(node.name, export=False)
        self.generic_visit(node)

    def _visit_comprehension(self, node):
        for gen in node.generators:
            for sub in ast.walk(gen.target):
                if isinstance(sub, ast.Name):
                    self._bind(sub.id, export=False)
        for gen in node.generators:
            self.visit(gen.iter)
            for cond in gen.ifs:
                self.visit(cond)
        if isinstance(node, ast.DictComp):
            self.visit(node.key)
            self.visit(node.value)
        else:
            self.visit(node.elt)

    visit_ListComp = _visit_comprehension
    visit_SetComp = _visit_comprehension
    visit_GeneratorExp = _visit_comprehension
    visit_DictComp = _visit_comprehension

    def visit_MatchAs(self, node):
        if node.name:
            self._bind(node.name)
        self.generic_visit(node)

    def visit_MatchStar(self, node):
        if node.name:
            self._bind(node.name)

    def visit_MatchMapping(self, node):
        if node.rest:
            self._bind(node.rest)
        self.generic_visit(node)


@contextlib.contextmanager
def _recording_warnings(into: List[Diagnostic]):
    """Appends the warnings raised inside the block to `into`, in order."""
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            yield
        finally:
            into.extend(from_warning(w) for w in caught)


def _suppresses_value(source: str) -> bool:
    """True when the last token of the snippet is a `;`."""
    try:
        tokens = list(tokenize.generate_tokens(io.StringIO(source).readline))
    except (tokenize.TokenError, SyntaxError):
        return False
    skip = (tokenize.NEWLINE, tokenize.NL, tokenize.COMMENT, tokenize.ENDMARKER,
            tokenize.INDENT, tokenize.DEDENT)
    for tok in reversed(tokens):
        if tok.type in skip:
            continue
        return tok.type == tokenize.OP and tok.string == ';'
    return False


# ===================================================================
# 4. The compiler
# ===================================================================

class Compiler:
    """Compiles snippets on top of a chain of previously accepted units."""

    def __init__(self, references: Optional[ReferenceSet] = None,
                 config: Optional[SessionConfig] = None,
                 code_space: Optional[CodeSpace] = None):
        self.references = references if references is not None else ReferenceSet()
        self.config = config or SessionConfig()
        self.code_space = code_space if code_space is not None else CodeSpace()

    @property
    def flags(self) -> int:
        flags = self.config.compile_flags
        if self.config.preview_features:
            flags |= ast.PyCF_ALLOW_TOP_LEVEL_AWAIT
        return flags

    def compile(self, source: str, previous: Optional[CompilationUnit] = None,
                *, runtime_names: Iterable[str] = ()) -> CompileResult:
        index = previous.index + 1 if previous is not None else 0
        filename = f"<submission {index}>"
        logger.debug(f"Compiling {filename} ({len(source)} chars)")

        # Diagnostics keep the order in which they were emitted.
        diagnostics: List[Diagnostic] = []
        tree = None
        try:
            with _recording_warnings(diagnostics):
                tree = ast.parse(source, filename=filename, mode="exec")
        except SyntaxError as e:
            diagnostics.append(from_syntax_error(e))
        except ValueError as e:
            diagnostics.append(Diagnostic(Severity.ERROR, "syntax-error", str(e)))
        except (RecursionError, MemoryError):
            diagnostics.append(Diagnostic(Severity.ERROR, "too-complex",
                                          "snippet is too deeply nested to parse"))

        walker = None
        if tree is not None:
            walker = _ScopeWalker()
            try:
                walker.visit(tree)
            except RecursionError:
                diagnostics.append(Diagnostic(Severity.ERROR, "too-complex",
                                              "snippet is too deeply nested to analyse"))
            else:
                diagnostics.extend(self._check_names(walker, previous, runtime_names))

        codes = None
        if tree is not None and not has_errors(diagnostics):
            try:
                with _recording_warnings(diagnostics):
                    codes = self._generate(tree, source, filename)
            except SyntaxError as e:
                diagnostics.append(from_syntax_error(e))
            except Exception as e:
                logger.warning(f"Code generation failed for {filename} without diagnostics: {e!r}")
                err = EmitError(f"code generation failed: {type(e).__name__}: {e}", e)
                return CompileResult(diagnostics=diagnostics, emit_error=err)

        if has_errors(diagnostics):
            logger.debug(f"{filename} rejected with {len(diagnostics)} diagnostic(s)")
            return CompileResult(diagnostics=diagnostics)

        body, tail = codes
        unit = CompilationUnit(
            index=index,
            unit_id=f"submission-{index}-{secrets.token_hex(4)}",
            source=source,
            filename=filename,
            entry=EntryPoint(ENTRY_NAMESPACE, f"Submission{index}", "invoke"),
            declared=frozenset(walker.declared),
            symbols=(previous.symbols if previous is not None else frozenset()) | walker.declared,
            previous=previous,
            references=self.references,
            diagnostics=tuple(non_blocking(diagnostics)),
        )
        self.code_space.load(unit, Submission(unit.unit_id, body, tail))
        logger.debug(f"Loaded {unit.unit_id} as {unit.entry.qualified_name}")
        return CompileResult(unit=unit, diagnostics=diagnostics)

    def _check_names(self, walker: _ScopeWalker, previous: Optional[CompilationUnit],
                     runtime_names: Iterable[str]) -> List[Diagnostic]:
        out: List[Diagnostic] = []
        reference_names = self.references.names
        for name in sorted(walker.declared & reference_names):
            out.append(Diagnostic(Severity.INFO, "redefined-reference",
                                  f"'{name}' shadows a session reference"))

        policy = self.config.undefined_names
        if policy == "ignore" or walker.star_import:
            return out
        visible = set(BUILTIN_NAMES)
        visible |= walker.bound
        visible |= reference_names
        visible.update(runtime_names)
        if previous is not None:
            visible |= previous.symbols
        severity = Severity.ERROR if policy == "error" else Severity.WARNING
        missing = [n for n in walker.loads if n.id not in visible]
        for node in missing:
            out.append(Diagnostic(
                severity=severity,
                code="undefined-name",
                message=f"name '{node.id}' is not defined",
                line=node.lineno,
                col=node.col_offset + 1,
                end_line=getattr(node, 'end_lineno', None),
                end_col=(node.end_col_offset + 1) if getattr(node, 'end_col_offset', None) is not None else None,
            ))
        return out

    def _generate(self, tree: ast.Module, source: str, filename: str):
        """Returns the (body, tail) code objects for a parsed snippet."""
        statements = list(tree.body)
        tail_node = None
        if statements and isinstance(statements[-1], ast.Expr) and not _suppresses_value(source):
            tail_node = ast.Expression(body=statements.pop().value)
        module = ast.Module(body=statements, type_ignores=[])
        flags = self.flags
        body = compile(module, filename, "exec", flags=flags, dont_inherit=True)
        tail = None
        if tail_node is not None:
            tail = compile(tail_node, filename, "eval", flags=flags, dont_inherit=True)
        return body, tail
