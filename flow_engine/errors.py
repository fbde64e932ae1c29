"""
Exceptions raised by the flow engine.

Malformed rules, bad regexes and rejected intents are data, not
exceptions. The one hard failure is an integration error: asking for the
orchestrator where none was created.
"""


class MissingOrchestratorError(RuntimeError):
    """Raised when a host asks for a FlowOrchestrator that was never created."""

    def __init__(self, message: str = "Missing orchestrator: no flow has been started"):
        super().__init__(message)
