"""
The execution host: runs a loaded submission once and classifies the outcome.
"""
import asyncio
import contextlib
import io
import logging
import threading
from dataclasses import dataclass
from typing import Any, Literal, Optional

from snip.snip_compiler import CodeSpace, CompilationUnit
from snip.snip_config import SessionConfig
from snip.snip_datatypes import CaptureBusy, NO_VALUE
from snip.snip_printer import Printer, FaultFormatter
from snip.snip_state import SubmissionState

logger = logging.getLogger(__name__)

# sys.stdout is process-wide; only one capture may be pending at a time.
_capture_lock = threading.Lock()


def capture_busy() -> bool:
    return _capture_lock.locked()


@contextlib.contextmanager
def capture_output():
    """Redirects sys.stdout into a buffer and always restores the previous stream."""
    if not _capture_lock.acquire(blocking=False):
        raise CaptureBusy("stdout is already captured by another submission")
    buffer = io.StringIO()
    logger.debug("stdout capture started")
    try:
        with contextlib.redirect_stdout(buffer):
            yield buffer
    finally:
        _capture_lock.release()
        logger.debug("stdout capture released")


@dataclass
class ExecutionResult:
    """The structured result of running one submission."""
    status: Literal['value', 'no-value', 'fault']
    text: Optional[str] = None
    output: str = ""
    value: Any = NO_VALUE
    exception: Optional[BaseException] = None

    @property
    def has_value(self) -> bool:
        return self.status == 'value'

    @property
    def faulted(self) -> bool:
        return self.status == 'fault'


class ExecutionHost:
    """Invokes compiled submissions against the session state."""

    def __init__(self, code_space: CodeSpace, config: Optional[SessionConfig] = None,
                 printer: Optional[Printer] = None, fault_formatter: Optional[FaultFormatter] = None):
        self.code_space = code_space
        self.config = config or SessionConfig()
        self.printer = printer or Printer(self.config.printer)
        self.fault_formatter = fault_formatter or FaultFormatter(
            self.config.trace_depth, source_lookup=code_space.source_for
        )

    async def execute(self, unit: CompilationUnit, state: SubmissionState) -> ExecutionResult:
        # A miss here is an invariant violation and propagates to the session.
        submission = self.code_space.resolve(unit.unit_id)
        state.ensure_capacity(unit.index + 1)

        value: Any = NO_VALUE
        fault: Optional[BaseException] = None
        with capture_output() as buffer:
            try:
                value = await self._run(submission, state)
            except BaseException as e:
                if isinstance(e, asyncio.CancelledError) and _being_cancelled():
                    raise
                fault = e
        output = buffer.getvalue()

        state.record(unit.index, state.bindings_of(unit.declared), value, faulted=fault is not None)

        if fault is not None:
            logger.debug(f"{unit.filename} faulted with {type(fault).__name__}")
            return ExecutionResult(
                status='fault',
                text=self.fault_formatter.format(fault),
                output=output,
                exception=fault,
            )
        if value is NO_VALUE:
            return ExecutionResult(status='no-value', output=output)

        # Console convention: `_` is the last produced value.
        state.namespace["_"] = state.latest_value()
        return ExecutionResult(
            status='value',
            text=self.printer.pformat(value),
            output=output,
            value=value,
        )

    async def _run(self, submission, state: SubmissionState) -> Any:
        timeout = self.config.timeout
        if timeout is None:
            return await submission.invoke(state)
        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                return await submission.invoke(state)
        except TimeoutError:
            if not deadline.expired():
                raise
            raise TimeoutError(f"submission did not complete within {timeout}s") from None


def _being_cancelled() -> bool:
    """True when the task running the submission was itself cancelled from outside."""
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0
