"""Task source: turn free-form input into independent stream descriptors.

A text-generation call returns a JSON array of ``{id, title, prompt}``
objects. The response is decoded permissively (fenced block, bracketed
slice, raw text) and then validated strictly.
"""

from __future__ import annotations

import json
import re

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from worktree_streams.core.agent import AgentLauncher
from worktree_streams.core.errors import DecompositionParseFailed, LifecycleError
from worktree_streams.planner.branch_names import DEFAULT_NAMESPACE, generate_branch_name
from worktree_streams.schemas.streams import StreamDescriptor
from worktree_streams.utils.console import console, log_error, log_step
from worktree_streams.utils.process import ProcessRunner

SPLIT_PROMPT = """You are a task decomposition assistant. Given a task description, break it into independent, parallelizable work streams.

Return ONLY a JSON array (no markdown fences, no explanation) where each element has:
- "id": a short kebab-case identifier (e.g. "add-tests")
- "title": a short human-readable title
- "prompt": the full detailed prompt that an AI coding agent should receive to complete this work stream independently

Rules:
- Each work stream must be independent. It should not depend on the output of another stream.
- If the task is a single indivisible unit, return an array with one element.
- Do NOT include meta-tasks like "review" or "integrate". Only concrete implementation tasks.

Task description:
"""

BEAD_GROUP_PROMPT = """You are a task grouping assistant. Given a list of open beads (work items),
group them into small clusters of very closely related items. Items that touch
the same file, fix the same subsystem, or share a tight dependency belong
together. Singletons are fine. Do not force grouping.

Return ONLY a JSON array (no markdown fences, no explanation) where each element has:
- "id": short kebab-case identifier for the group
- "title": short human-readable group title
- "prompt": full agent prompt that MUST include:
  1. The bead IDs in the group
  2. Instruction to run `bd show <id>` for each bead to verify not already claimed/in_progress, skipping any that are
  3. Instruction to immediately run `bd update <id> --status in_progress` for each unclaimed bead before starting work
  4. Description of the actual work derived from bead titles/descriptions
  5. Instruction to run `bd close <id>` for each completed bead
  6. Instruction to run `bd sync` when all beads in the group are closed

Rules:
- Clusters should be SMALL (1-3 beads). If in doubt, keep items separate.
- "Closely related" means same module/subsystem, shared implementation, or logical setup, not just thematic similarity.
- Each group must be independently completable with no cross-group dependencies.
- Do NOT add meta-tasks like "review" or "integrate".

Open beads:
"""

_FENCE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")


class StreamItem(BaseModel):
    """One element of the generated array."""

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1)


_ITEMS = TypeAdapter(list[StreamItem])


def extract_payload(raw: str) -> str:
    """Pull the JSON text out of a model response.

    Tries a fenced code block, then the span from the first '[' to the
    last ']', then the trimmed response itself.
    """
    text = raw.strip()

    fence = _FENCE.search(text)
    if fence:
        return fence.group(1).strip()

    first = text.find("[")
    last = text.rfind("]")
    if first != -1 and last > first:
        return text[first : last + 1]

    return text


def parse_stream_items(raw: str) -> list[StreamItem]:
    """Decode and validate a response into stream items.

    Raises:
        DecompositionParseFailed: Invalid JSON, empty array, or an element
            missing a non-empty id/title/prompt
    """
    payload = extract_payload(raw)

    try:
        data = json.loads(payload)
    except ValueError as e:
        raise DecompositionParseFailed(
            f"Failed to parse work streams from response ({e}):\n{raw}", raw
        ) from e

    if not isinstance(data, list) or not data:
        raise DecompositionParseFailed(
            f"Expected non-empty JSON array of work streams, got:\n{raw}", raw
        )

    try:
        return _ITEMS.validate_python(data)
    except ValidationError as e:
        raise DecompositionParseFailed(
            f"Invalid work stream (missing id/title/prompt): {e}\n{raw}", raw
        ) from e


def parse_stream_descriptors(
    raw: str,
    namespace: str = DEFAULT_NAMESPACE,
) -> list[StreamDescriptor]:
    """Decode a response and give every stream its own branch."""
    return [
        StreamDescriptor(
            id=item.id,
            title=item.title,
            prompt=item.prompt,
            branch=generate_branch_name(item.id, namespace=namespace),
        )
        for item in parse_stream_items(raw)
    ]


class TaskSource:
    """Asks the agent to split a task or group work items into streams."""

    def __init__(
        self,
        agent: AgentLauncher,
        namespace: str = DEFAULT_NAMESPACE,
        runner: ProcessRunner | None = None,
    ):
        self.agent = agent
        self.namespace = namespace
        self.runner = runner or agent.runner

    def decompose(self, task: str, model: str | None = None) -> list[StreamDescriptor]:
        """Split a task description into independent streams."""
        log_step("Splitting task into work streams...")
        return self._generate(SPLIT_PROMPT + task, model, "split task")

    def group(self, items: str, model: str | None = None) -> list[StreamDescriptor]:
        """Group pending work items into small clusters."""
        log_step("Grouping beads into work streams...")
        return self._generate(BEAD_GROUP_PROMPT + items, model, "group beads")

    def fetch_ready_beads(self) -> str:
        """Pending work items from ``bd ready``."""
        log_step("Fetching ready beads...")
        result = self.runner.run(["bd", "ready"])
        if not result.ok:
            msg = result.stderr.strip() or "bd command failed"
            raise LifecycleError(f"Failed to fetch beads: {msg}")

        output = result.stdout.strip()
        if not output:
            raise LifecycleError("No ready beads found. Nothing to do.")
        return output

    def _generate(self, prompt: str, model: str | None, action: str) -> list[StreamDescriptor]:
        args = ["-p", prompt, "--output-format", "text"]
        if model:
            args.extend(["--model", model])

        with console.status("Waiting for Claude..."):
            result = self.agent.run_captured(args)

        if not result.ok:
            log_error(f"Claude failed to {action}")
            if result.stderr.strip():
                console.print(result.stderr.strip(), markup=False)
            raise LifecycleError(f"Failed to {action} into work streams")

        return parse_stream_descriptors(result.stdout, namespace=self.namespace)
