"""Exception hierarchy for the documentation pipeline.

Failures are classified by blast radius:
- TransientError: store unavailable, model timed out. Retryable.
- AgentError / FileAnalysisError: one unit failed. Recorded, run continues.
- SessionError: the session cannot be resumed. Halts the run.
"""


class DocweaveError(Exception):
    """Base class for all docweave errors."""


class ConfigError(DocweaveError):
    """Raised when the configuration file cannot be parsed."""


class TransientError(DocweaveError):
    """A retryable failure that did not corrupt persisted state."""


class StoreError(TransientError):
    """A checkpoint write or read failed; the transaction was rolled back."""


class LLMError(DocweaveError):
    """Language-model call failed.

    ``transient`` distinguishes timeouts / connection errors (worth one
    retry) from malformed output that will not improve on retry.
    """

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient

    def is_transient(self) -> bool:
        return self.transient


class AgentError(DocweaveError):
    """A single characterization or top-down agent failed."""

    def __init__(self, agent_name: str, reason: str):
        super().__init__(f"Agent '{agent_name}' failed: {reason}")
        self.agent_name = agent_name
        self.reason = reason


class FileAnalysisError(DocweaveError):
    """Analysis of one file failed and the file must be marked failed."""

    def __init__(self, file_path: str, reason: str):
        super().__init__(f"{file_path}: {reason}")
        self.file_path = file_path
        self.reason = reason


class NoSynthesisError(FileAnalysisError):
    """The final Deep Research iteration produced no purpose/content."""

    def __init__(self, file_path: str):
        super().__init__(file_path, "Deep Research produced no synthesis")


class SessionError(DocweaveError):
    """Session record missing or inconsistent; the run cannot proceed."""


class PipelineTimeoutError(DocweaveError):
    """The run exceeded its wall-clock budget. The session stays resumable."""
