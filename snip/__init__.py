from snip.snip_runtime import SessionRunner, Transcript, SubmissionReport
from snip.snip_config import SessionConfig
from snip.snip_references import ReferenceSet
from snip.snip_host import ExecutionResult

__all__ = [
    "SessionRunner", "Transcript", "SubmissionReport",
    "SessionConfig", "ReferenceSet", "ExecutionResult",
]
