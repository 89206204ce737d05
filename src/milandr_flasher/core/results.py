"""
Result object returned by the core workflows.

The CLI renders it as text (``to_summary``) or JSON (``to_dict``).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class OperationResult:
    """
    Outcome of a flasher workflow.

    Attributes:
        ok: Whether the workflow completed successfully
        operation: Workflow name (e.g., "flash", "identify")
        port: Serial port used
        steps: Names of protocol steps that completed, in order
        bytes_len: Firmware bytes processed
        warnings: Non-blocking issues encountered
        errors: Error that stopped the workflow
        metadata: Workflow-specific values (identity, load address...)
        logs: Captured log lines
    """
    ok: bool
    operation: str
    port: str = ""
    steps: List[str] = field(default_factory=list)
    bytes_len: int = 0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        """Add an error message and mark result as failed."""
        self.errors.append(message)
        self.ok = False

    def to_summary(self) -> str:
        status = "SUCCESS" if self.ok else "FAILED"
        lines = [f"[{status}] {self.operation}"]
        if self.port:
            lines.append(f"  Port: {self.port}")
        if self.bytes_len:
            lines.append(f"  Bytes: {self.bytes_len:,}")
        for key, value in self.metadata.items():
            lines.append(f"  {key}: {value}")
        if self.warnings:
            lines.append("  Warnings:")
            lines.extend(f"    - {warn}" for warn in self.warnings)
        if self.errors:
            lines.append("  Errors:")
            lines.extend(f"    - {err}" for err in self.errors)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "ok": self.ok,
            "operation": self.operation,
            "port": self.port,
            "steps": self.steps,
            "bytes_len": self.bytes_len,
            "warnings": self.warnings,
            "errors": self.errors,
            "metadata": self.metadata,
            "logs": self.logs,
        }

    @classmethod
    def failure(cls, operation: str, error: str, **kwargs) -> "OperationResult":
        result = cls(ok=False, operation=operation, **kwargs)
        result.errors.append(error)
        return result
