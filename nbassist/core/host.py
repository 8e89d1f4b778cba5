"""Host document collaborator.

The pipeline only needs a narrow view of the notebook: its cells, the current
selection inside a cell, an error/output channel it can clear, and the kernel
variables: their names, and a description per name used to resolve ``@name``
tags in instructions.
"""

from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any, Protocol

from nbassist.core.schemas_cells import CellRecord

Position = tuple[int, int]  # (line, column), both zero-based


class HostDocument(Protocol):
    """What the pipeline reads from (and tells) the hosting notebook."""

    path: str

    def cells(self) -> list[CellRecord]: ...

    def cell_source(self, cell_id: str) -> str | None: ...

    def selection(self, cell_id: str) -> str: ...

    def clear_error_output(self, cell_id: str) -> None: ...

    async def describe_variable(self, name: str) -> str | None: ...

    async def list_variables(self) -> list[str]: ...



def extract_selection(source: str, start: Position, end: Position) -> str:
    """Text between two (line, column) positions, right-trimmed.

    An empty selection (``start == end``) yields ``""``.
    """
    if start == end:
        return ""
    if end < start:
        start, end = end, start

    lines = source.split("\n")
    start_line, start_col = start
    end_line, end_col = end

    parts: list[str] = []
    for i in range(start_line, end_line + 1):
        if i >= len(lines):
            break
        line = lines[i]
        if i == start_line and i == end_line:
            parts.append(line[start_col:end_col])
        elif i == start_line:
            parts.append(line[start_col:])
        elif i == end_line:
            parts.append(line[:end_col])
        else:
            parts.append(line)
    return "\n".join(parts).rstrip()


class InMemoryNotebook:
    """Notebook held in memory; used by the HTTP surface and in tests."""

    def __init__(
        self,
        path: str,
        cells: Iterable[CellRecord] = (),
        variables: Mapping[str, str] | None = None,
        variable_inspector: Callable[[str], Awaitable[str | None]] | None = None,
    ):
        self.path = path
        self._cells: list[CellRecord] = list(cells)
        self._selections: dict[str, str] = {}
        self._error_outputs: dict[str, Any] = {}
        self._variables: dict[str, str] = dict(variables or {})
        self._variable_inspector = variable_inspector

    def cells(self) -> list[CellRecord]:
        return list(self._cells)

    def cell_source(self, cell_id: str) -> str | None:
        for cell in self._cells:
            if cell.id == cell_id:
                return cell.source
        return None

    def set_cells(self, cells: Iterable[CellRecord]) -> None:
        self._cells = list(cells)
        live = {cell.id for cell in self._cells}
        self._selections = {k: v for k, v in self._selections.items() if k in live}
        self._error_outputs = {k: v for k, v in self._error_outputs.items() if k in live}

    def selection(self, cell_id: str) -> str:
        return self._selections.get(cell_id, "")

    def select(self, cell_id: str, start: Position, end: Position) -> None:
        source = self.cell_source(cell_id) or ""
        self._selections[cell_id] = extract_selection(source, start, end)

    def error_output(self, cell_id: str) -> Any:
        return self._error_outputs.get(cell_id)

    def set_error_output(self, cell_id: str, traceback: Any) -> None:
        self._error_outputs[cell_id] = traceback

    def clear_error_output(self, cell_id: str) -> None:
        self._error_outputs.pop(cell_id, None)

    def set_variables(self, variables: Mapping[str, str]) -> None:
        """Replace the kernel variables reported by the host (name -> description)."""
        self._variables = dict(variables)

    async def describe_variable(self, name: str) -> str | None:
        if self._variable_inspector is not None:
            return await self._variable_inspector(name)
        return self._variables.get(name)

    async def list_variables(self) -> list[str]:
        return list(self._variables)
