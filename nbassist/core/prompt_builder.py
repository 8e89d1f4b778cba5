"""Prompt assembly for cell edits and error fixes.

``assemble`` is pure: the same inputs always produce the same payload, and
every input may be empty.
"""

import json
import re
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from nbassist.core.logging import get_logger
from nbassist.core.schemas_cells import CellRecord, PromptPayload, RankedCell

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are an expert Python programmer working inside a Jupyter notebook.
You rewrite the code of a single notebook cell.
Reply with the complete replacement code for the cell and nothing else:
no explanations, no markdown fences. Keep comments short."""

ANSI_ESCAPE = re.compile(r"\x1B\[[0-9;]*[a-zA-Z]")
TAGGED_VARIABLE = re.compile(r"@(\w+)")
IMPORT_LINE = re.compile(r"^\s*(import\s+\w|from\s+[\w.]+\s+import\s)")

# Stands in for a fix-error traceback the host could not provide
MISSING_TRACEBACK = "No traceback found"


def normalize_traceback(raw: Any) -> str | None:
    """Collapse a host error payload into a single traceback string.

    Hosts report tracebacks as a list of lines (with ANSI colour codes), a
    plain string, or a structured object. Missing or blank payloads yield None.
    """
    if raw is None:
        return None
    if isinstance(raw, (list, tuple)):
        text = "\n".join(str(line) for line in raw)
    elif isinstance(raw, str):
        text = raw
    elif isinstance(raw, dict):
        if "traceback" in raw:
            return normalize_traceback(raw["traceback"])
        text = json.dumps(raw, default=str)
    else:
        text = str(raw)

    text = ANSI_ESCAPE.sub("", text).strip()
    return text or None


def collect_imports(cells: Sequence[CellRecord]) -> list[str]:
    """Import statements found anywhere in the notebook, deduplicated in order."""
    seen: dict[str, None] = {}
    for cell in cells:
        for line in cell.source.split("\n"):
            if IMPORT_LINE.match(line):
                seen.setdefault(line.strip(), None)
    return list(seen)


async def enrich_instruction(
    instruction: str,
    cells: Sequence[CellRecord],
    describe_variable: Callable[[str], Awaitable[str | None]] | None = None,
    list_variables: Callable[[], Awaitable[list[str]]] | None = None,
) -> str:
    """Append notebook imports, kernel variables and ``@variable`` descriptions."""
    if not instruction.strip():
        return instruction

    lines = [instruction]

    imports = collect_imports(cells)
    if imports:
        lines.append("")
        lines.append("The following imports are already present in the notebook:")
        lines.extend(imports)

    if list_variables is not None:
        try:
            names = await list_variables()
        except Exception as e:
            logger.warning(f"Could not list kernel variables: {e}")
            names = []
        if names:
            lines.append("")
            lines.append("The following variables exist in memory of the notebook kernel:")
            lines.append(", ".join(names))

    if describe_variable is not None:
        for name in dict.fromkeys(TAGGED_VARIABLE.findall(instruction)):
            try:
                description = await describe_variable(name)
            except Exception as e:
                logger.warning(f"Could not inspect variable {name}: {e}")
                continue
            if description:
                lines.append("")
                lines.append(f"{name}: {description}")

    return "\n".join(lines)


def _fenced(code: str) -> list[str]:
    return ["```python", code.rstrip("\n"), "```"]


def assemble(
    instruction: str,
    original_code: str,
    ranked_context: Sequence[RankedCell],
    selected_code: str = "",
    traceback: str | None = None,
) -> PromptPayload:
    """
    Build the completion request for one interaction.

    Args:
        instruction: User request (may be empty, e.g. for error fixes)
        original_code: Current code of the cell being edited
        ranked_context: Retrieved cells, most relevant first (order is kept)
        selected_code: Part of the cell the user selected, if any
        traceback: Normalized traceback when fixing an error

    Returns:
        PromptPayload with system and user messages
    """
    lines: list[str] = []

    if traceback:
        lines.append("The code in this cell raised an error. Fix it.")
        if instruction.strip():
            lines.extend(["", "Additional instruction from the user:", instruction.strip()])
    elif instruction.strip():
        lines.extend(["Instruction:", instruction.strip()])
    else:
        lines.append("No instruction was given. Improve the code where it clearly needs it.")

    lines.append("")
    if original_code.strip():
        lines.append("Current code of the cell:")
        lines.extend(_fenced(original_code))
    else:
        lines.append("The cell is currently empty. Write new code for it.")

    if selected_code.strip():
        lines.extend(["", "The user selected this part of the cell; focus the change there:"])
        lines.extend(_fenced(selected_code))

    if traceback:
        lines.extend(["", "Traceback:", "```", traceback.rstrip("\n"), "```"])

    if ranked_context:
        lines.extend(["", "Related cells from the same notebook, most relevant first:"])
        for rank, cell in enumerate(ranked_context, start=1):
            lines.append(f"# Context {rank} (similarity {cell.score:.2f})")
            lines.extend(_fenced(cell.source))

    return PromptPayload(
        system=SYSTEM_PROMPT,
        user="\n".join(lines),
        context_ids=[cell.id for cell in ranked_context],
        has_traceback=bool(traceback),
    )
