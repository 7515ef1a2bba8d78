"""
The session runner: compiles, executes and reports one snippet at a time.
"""
import asyncio
import functools
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from snip.snip_compiler import CodeSpace, CompilationUnit, Compiler, CompileResult
from snip.snip_config import SessionConfig
from snip.snip_datatypes import (
    CaptureBusy, Diagnostic, SessionBusy, TranscriptEntry,
)
from snip.snip_diagnostics import classify, format_diagnostic, non_blocking
from snip.snip_host import ExecutionHost, ExecutionResult, capture_busy
from snip.snip_references import ReferenceSet
from snip.snip_state import SubmissionState

logger = logging.getLogger(__name__)


# ===================================================================
# 1. Transcript
# ===================================================================

class Transcript:
    """Default transcript sink: keeps one batch of entries per submission."""

    def __init__(self):
        self.batches: List[List[TranscriptEntry]] = []

    def append_batch(self, entries: List[TranscriptEntry]):
        self.batches.append(list(entries))

    def entries(self) -> List[TranscriptEntry]:
        return [e for batch in self.batches for e in batch]

    def render(self) -> str:
        lines = []
        for entry in self.entries():
            if entry.kind == 'echo':
                lines.append(f">>> {entry.text}")
            else:
                lines.append(entry.text.rstrip("\n"))
        return "\n".join(lines)


@dataclass
class SubmissionReport:
    """Everything one call to `submit` produced."""
    source: str
    entries: List[TranscriptEntry] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    result: Optional[ExecutionResult] = None
    unit: Optional[CompilationUnit] = None

    @property
    def accepted(self) -> bool:
        return self.unit is not None

    def kinds(self) -> List[str]:
        return [e.kind for e in self.entries]

    def texts(self, kind: str) -> List[str]:
        return [e.text for e in self.entries if e.kind == kind]


# ===================================================================
# 2. Session runner
# ===================================================================

class SessionRunner:
    """Runs submitted snippets in order, sharing declarations between them."""

    def __init__(self, config: Optional[SessionConfig] = None,
                 references: Optional[ReferenceSet] = None, sink=None):
        self.config = config or SessionConfig()
        if references is None:
            references = ReferenceSet.from_modules(self.config.references)
        self.references = references
        self.code_space = CodeSpace()
        self.compiler = Compiler(references, self.config, self.code_space)
        self.host = ExecutionHost(self.code_space, self.config)
        self.state = SubmissionState()
        self.state.namespace.update(references)
        self.transcript = sink if sink is not None else Transcript()

        self.unit: Optional[CompilationUnit] = None
        self.history: List[str] = []
        self.terminated = False
        self.termination_reason: Optional[str] = None
        self._in_flight = False

    @property
    def namespace(self):
        return self.state.namespace

    async def submit(self, source: str) -> SubmissionReport:
        """The main entry point: compile, execute and report one snippet."""
        if self._in_flight:
            raise SessionBusy("a submission is already in flight")
        self._in_flight = True
        try:
            report = await self._process(source)
        finally:
            self._in_flight = False
        self.transcript.append_batch(report.entries)
        return report

    async def run_file(self, path) -> SubmissionReport:
        """Runs a whole source file as a single submission."""
        return await self.submit(Path(path).read_text(encoding="utf-8"))

    async def _process(self, source: str) -> SubmissionReport:
        report = SubmissionReport(source, entries=[TranscriptEntry('echo', source)])
        if self.terminated:
            report.entries.append(TranscriptEntry(
                'error', f"session terminated: {self.termination_reason}"))
            return report

        # 1. Compile
        try:
            compiled = await self._compile(source)
        except Exception as e:
            self._terminate(report, e)
            return report
        report.diagnostics = compiled.diagnostics

        if compiled.emit_error is not None:
            self._report_warnings(report, compiled)
            report.entries.append(TranscriptEntry('fault', f"EmitError: {compiled.emit_error}"))
            return report

        if not compiled.success:
            for diag in classify(compiled.diagnostics):
                report.entries.append(TranscriptEntry('error', format_diagnostic(diag, source)))
            self._report_warnings(report, compiled)
            return report

        if capture_busy():
            # Another session holds stdout; the snippet is not committed.
            self.code_space.unload(compiled.unit.unit_id)
            self._report_warnings(report, compiled)
            report.entries.append(TranscriptEntry(
                'fault', "CaptureBusy: stdout is already captured by another submission"))
            return report

        # The chain advances even if execution faults below.
        self.unit = compiled.unit
        self.history.append(source)
        report.unit = compiled.unit
        logger.debug(f"Chain advanced to {compiled.unit.unit_id}")
        self._report_warnings(report, compiled)

        # 2. Execute
        try:
            result = await self.host.execute(compiled.unit, self.state)
        except CaptureBusy as e:
            report.entries.append(TranscriptEntry('fault', f"CaptureBusy: {e}"))
            return report
        except Exception as e:
            # Entry point misses and other internal errors end the session.
            self._terminate(report, e)
            return report
        report.result = result

        # 3. Report
        if result.output:
            report.entries.append(TranscriptEntry('output', result.output))
        if result.status == 'value':
            report.entries.append(TranscriptEntry('value', result.text))
        elif result.status == 'fault':
            report.entries.append(TranscriptEntry('fault', result.text))
        return report

    async def _compile(self, source: str) -> CompileResult:
        runtime_names = frozenset(self.state.namespace)
        compile_ = functools.partial(
            self.compiler.compile, source, self.unit, runtime_names=runtime_names
        )
        if not self.config.compile_in_executor:
            return compile_()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, compile_)

    def _report_warnings(self, report: SubmissionReport, compiled: CompileResult):
        for diag in non_blocking(compiled.diagnostics):
            report.entries.append(TranscriptEntry('warning', format_diagnostic(diag)))

    def _terminate(self, report: SubmissionReport, exc: Exception):
        self.terminated = True
        self.termination_reason = f"{type(exc).__name__}: {exc}"
        logger.error(f"Session terminated: {self.termination_reason}")
        report.entries.append(TranscriptEntry('fault', f"InternalError: {self.termination_reason}"))
