"""Results of ``connect`` and ``validate``.

``SchemaValidationResult`` says whether the columns resequencing touches
exist; ``ConnectionResult`` wraps it with the profile outcome.  The
db.toml models are in ``db_resequencer.config.models``.
"""

from pydantic import BaseModel, Field


class ColumnDiff(BaseModel):
    """A column resequencing needs that the database lacks."""

    table: str
    column: str
    message: str = ""


class SchemaValidationResult(BaseModel):
    """Outcome of ``validate_schema``.

    ``undeclared_dependents`` holds ``"table.column"`` foreign keys that
    reference a sequenced table without being configured as its
    dependents.  A fix would leave them dangling, so they are reported,
    but they do not make the schema invalid.
    """

    valid: bool
    missing_tables: list[str] = Field(default_factory=list)
    missing_columns: list[ColumnDiff] = Field(default_factory=list)
    undeclared_dependents: list[str] = Field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.missing_tables) + len(self.missing_columns)

    def format_report(self) -> str:
        """Plain-text summary for the CLI."""
        out = ["Schema valid" if self.valid else "Schema validation failed:"]
        if self.missing_tables:
            out.append(f"\n  Missing tables ({len(self.missing_tables)}):")
            out.extend(f"    - {name}" for name in self.missing_tables)
        if self.missing_columns:
            out.append(f"\n  Missing columns ({len(self.missing_columns)}):")
            out.extend(f"    - {d.table}.{d.column}" for d in self.missing_columns)
        if self.undeclared_dependents:
            out.append(
                "\n  Undeclared dependents (warning): "
                + ", ".join(self.undeclared_dependents)
            )
        return "\n".join(out)


class ConnectionResult(BaseModel):
    """What ``connect_and_validate()`` found.

    Example:
        >>> ConnectionResult(success=False, error="Profile 'x' not found").success
        False
    """

    success: bool
    profile_name: str | None = None
    schema_valid: bool | None = None
    schema_report: SchemaValidationResult | None = None
    error: str | None = None
