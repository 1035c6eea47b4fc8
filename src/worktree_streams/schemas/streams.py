"""Pydantic models for stream descriptors and outcomes."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class StreamDescriptor(BaseModel):
    """An independent unit of work bound to its own branch. Immutable."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Short kebab-case identifier")
    title: str = Field(..., min_length=1, description="Human-readable title")
    prompt: str = Field(..., min_length=1, description="Full prompt for the agent")
    branch: str = Field(..., min_length=1, description="Branch the stream works on")


class PhaseOutcome(BaseModel):
    """Result of one lifecycle phase."""

    success: bool = Field(..., description="Phase reached its goal")
    skipped: bool = Field(default=False, description="Phase intentionally bypassed")
    message: str | None = Field(default=None, description="Detail for the user")


class StreamOutcome(BaseModel):
    """Aggregated outcome of one stream in a batch."""

    stream: StreamDescriptor
    success: bool = Field(default=False, description="Stream did not fail")
    skipped: bool = Field(default=False, description="Stream produced no changes")
    integrated: bool = Field(default=False, description="Merged into the mainline")
    published: bool = Field(default=False, description="Pushed after merge")
    torn_down: bool = Field(default=False, description="Workspace removed")
    error: str | None = Field(default=None, description="Error message if failed")
    reason: str | None = Field(default=None, description="Short reason from diagnostics")
    exit_code: int | None = Field(default=None, description="Child lifecycle exit code")

    @property
    def failed(self) -> bool:
        return not self.success and not self.skipped

    @property
    def needs_reconcile(self) -> bool:
        return self.success and not self.skipped


class RunReport(BaseModel):
    """All stream outcomes of one batch, in runner order."""

    outcomes: list[StreamOutcome] = Field(default_factory=list)

    @property
    def succeeded(self) -> list[StreamOutcome]:
        return [o for o in self.outcomes if o.success and not o.skipped]

    @property
    def skipped(self) -> list[StreamOutcome]:
        return [o for o in self.outcomes if o.skipped]

    @property
    def failed(self) -> list[StreamOutcome]:
        return [o for o in self.outcomes if o.failed]

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0
