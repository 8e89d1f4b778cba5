"""Cell, embedding and prompt schemas shared across the pipeline."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from nbassist.core.fingerprint import fingerprint


class CellRecord(BaseModel):
    """A cell as exposed by the host document (read-only to the pipeline)."""

    model_config = ConfigDict(frozen=True)

    id: str
    source: str = ""


class EmbeddingEntry(BaseModel):
    """Cached embedding for one cell.

    Serialized as ``{id, source, hash, embedding}`` to stay compatible with the
    stores written by the notebook extension.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    source_snapshot: str = Field(alias="source")
    fingerprint: str = Field(alias="hash")
    vector: list[float] = Field(alias="embedding")

    @model_validator(mode="after")
    def _check_fingerprint(self) -> "EmbeddingEntry":
        if self.fingerprint != fingerprint(self.source_snapshot):
            raise ValueError(f"Fingerprint does not match source for cell {self.id}")
        return self

    @classmethod
    def from_source(cls, cell_id: str, source: str, vector: list[float]) -> "EmbeddingEntry":
        """Build an entry, computing the fingerprint from ``source``."""
        return cls(id=cell_id, source=source, hash=fingerprint(source), embedding=vector)

    def is_fresh_for(self, cell: CellRecord) -> bool:
        """True when this entry was computed from ``cell``'s current source."""
        return self.fingerprint == fingerprint(cell.source)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class RankedCell(BaseModel):
    """One retrieved context cell."""

    id: str
    score: float
    source: str


class PromptPayload(BaseModel):
    """Request payload handed to a completion provider."""

    system: str
    user: str
    context_ids: list[str] = Field(default_factory=list)
    has_traceback: bool = False

    def to_messages(self) -> list[dict[str, str]]:
        """Chat-completions style message list."""
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": self.user},
        ]
