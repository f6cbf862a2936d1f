"""Typed result models returned by the execution engine."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ResultModel(BaseModel):
    """Base for engine results; serialized with aliases and without null fields."""

    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class ColumnHint(ResultModel):
    name: str
    type: str
    nullable: bool


class ForeignKeyHint(ResultModel):
    columns: List[str]
    referenced_table: str
    referenced_columns: List[str]


class TableSchemaHint(ResultModel):
    """Column, key and size information for one table referenced by a query."""

    schema_name: str = Field(..., alias="schema")
    table: str
    columns: List[ColumnHint] = Field(default_factory=list)
    primary_key: List[str] = Field(default_factory=list)
    foreign_keys: Optional[List[ForeignKeyHint]] = None
    row_count_estimate: int = 0


class SchemaHint(ResultModel):
    tables: List[TableSchemaHint] = Field(default_factory=list)


class ExecuteSqlResult(ResultModel):
    """Result of a single-statement execution."""

    rows: List[Dict[str, Any]] = Field(default_factory=list)
    row_count: int = Field(..., description="Total rows produced or affected by the statement")
    fields: List[str] = Field(default_factory=list)
    execution_time_ms: float
    offset: int = 0
    has_more: bool = False
    output_file: Optional[str] = Field(
        None, description="Path of the JSON file holding the page when it was too large"
    )
    truncated: Optional[bool] = None
    schema_hint: Optional[SchemaHint] = None
    connection: Optional[Dict[str, str]] = None


class StatementOutcome(ResultModel):
    """Outcome of one statement of a multi-statement execution."""

    statement_index: int
    sql: str
    line_number: int
    success: bool
    rows: Optional[List[Dict[str, Any]]] = None
    row_count: Optional[int] = None
    error: Optional[str] = None


class ExecuteSqlMultiResult(ResultModel):
    results: List[StatementOutcome] = Field(default_factory=list)
    total_statements: int
    success_count: int
    failure_count: int
    execution_time_ms: float
    schema_hint: Optional[SchemaHint] = None


class StatementError(ResultModel):
    statement_index: int
    line_number: int
    sql: str
    error: str


class StatementPreview(ResultModel):
    index: int
    line_number: int
    sql: str
    type: str


class ExecuteSqlFileResult(ResultModel):
    """Result of executing a SQL file."""

    success: bool
    file_path: str
    file_size: int
    total_statements: int
    statements_executed: int
    statements_failed: int
    execution_time_ms: float
    rows_affected: int = 0
    error: Optional[str] = None
    errors: Optional[List[StatementError]] = None
    rollback: Optional[bool] = None
    validate_only: Optional[bool] = None
    preview: Optional[List[StatementPreview]] = None


class SqlFilePreviewResult(ResultModel):
    file_path: str
    file_size: int
    file_size_formatted: str
    total_statements: int
    statements_by_type: Dict[str, int] = Field(default_factory=dict)
    statements: List[StatementPreview] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    summary: str


class DryRunError(ResultModel):
    """Structured PostgreSQL error captured during a dry-run."""

    message: str
    code: Optional[str] = None
    severity: Optional[str] = None
    detail: Optional[str] = None
    hint: Optional[str] = None
    internal_query: Optional[str] = None
    where: Optional[str] = None
    schema_name: Optional[str] = Field(None, alias="schema")
    table: Optional[str] = None
    column: Optional[str] = None
    data_type: Optional[str] = None
    constraint: Optional[str] = None
    file: Optional[str] = None
    line: Optional[str] = None
    routine: Optional[str] = None
    position: Optional[int] = None
    internal_position: Optional[int] = None


class NonRollbackableWarning(ResultModel):
    """A statement effect that survives rollback or cannot run in a transaction."""

    operation: str
    message: str
    statement_index: Optional[int] = None
    line_number: Optional[int] = None
    must_skip: bool


class DryRunStatementResult(ResultModel):
    index: int
    line_number: int
    sql: str
    type: str
    success: bool
    skipped: Optional[bool] = None
    skip_reason: Optional[str] = None
    warnings: Optional[List[str]] = None
    explain_plan: Optional[Any] = None
    row_count: Optional[int] = None
    rows: Optional[List[Dict[str, Any]]] = None
    error: Optional[DryRunError] = None
    execution_time_ms: Optional[float] = None


class SqlFileDryRunResult(ResultModel):
    """Result of dry-running a SQL file; every change is rolled back."""

    success: bool
    file_path: str
    file_size: int
    file_size_formatted: str
    total_statements: int
    success_count: int
    failure_count: int
    skipped_count: int
    total_rows_affected: int
    statements_by_type: Dict[str, int] = Field(default_factory=dict)
    execution_time_ms: float
    statement_results: List[DryRunStatementResult] = Field(default_factory=list)
    non_rollbackable_warnings: List[NonRollbackableWarning] = Field(default_factory=list)
    summary: str
    rolled_back: bool = True


class MutationPreviewResult(ResultModel):
    mutation_type: str
    estimated_rows_affected: int
    sample_affected_rows: List[Dict[str, Any]] = Field(default_factory=list)
    target_table: Optional[str] = None
    where_clause: Optional[str] = None
    warning: Optional[str] = None


class MutationDryRunResult(ResultModel):
    """Result of executing a mutation inside a transaction that is rolled back."""

    mutation_type: str
    success: bool
    rows_affected: int = 0
    execution_time_ms: Optional[float] = None
    skipped: Optional[bool] = None
    skip_reason: Optional[str] = None
    before_rows: Optional[List[Dict[str, Any]]] = None
    affected_rows: Optional[List[Dict[str, Any]]] = None
    target_table: Optional[str] = None
    where_clause: Optional[str] = None
    error: Optional[DryRunError] = None
    non_rollbackable_warnings: Optional[List[NonRollbackableWarning]] = None
    explain_plan: Optional[Any] = None
    warnings: Optional[List[str]] = None


class BatchQuery(BaseModel):
    name: str = Field(..., min_length=1)
    sql: str = Field(..., min_length=1)
    params: Optional[List[Any]] = None


class BatchQueryResult(ResultModel):
    success: bool
    rows: Optional[List[Dict[str, Any]]] = None
    row_count: Optional[int] = None
    error: Optional[str] = None
    execution_time_ms: float


class BatchExecuteResult(ResultModel):
    total_queries: int
    success_count: int
    failure_count: int
    total_execution_time_ms: float
    results: Dict[str, BatchQueryResult] = Field(default_factory=dict)


class QueryPlan(ResultModel):
    plan: Any


class TransactionResult(ResultModel):
    transaction_id: str
    status: str
    message: str
    name: Optional[str] = None
