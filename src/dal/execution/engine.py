"""Execution engine behind the SQL tools.

The engine validates tool arguments, leases connections from the
``ConnectionPoolManager`` and turns raw results into the typed models in
``dal.execution.models``. Statements that must not leave changes behind run
inside ``DryRunTransaction``, which always rolls back.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from opentelemetry import trace

from common.sql.statements import (
    ParsedStatement,
    detect_statement_type,
    extract_tables_from_sql,
    parse_executable_statements,
)
from dal.connection_state import ConnectionOverride
from dal.database import TRANSACTION_OVERRIDE_MESSAGE, ConnectionPoolManager, run_statement
from dal.error_classification import is_connection_error
from dal.execution.constants import (
    DEFAULT_DRY_RUN_STATEMENTS,
    DEFAULT_MUTATION_SAMPLE_SIZE,
    DEFAULT_PREVIEW_STATEMENTS,
    DEFAULT_SQL_LENGTH_LIMIT,
    EXPLAIN_FORMATS,
    MAX_BATCH_QUERIES,
    MAX_DRY_RUN_SAMPLE_ROWS,
    MAX_DRY_RUN_STATEMENTS,
    MAX_MUTATION_SAMPLE_SIZE,
    MAX_PARAMS,
    MAX_PREVIEW_STATEMENTS,
    MAX_ROWS_DEFAULT,
    MAX_ROWS_LIMIT,
    MAX_ROWS_PER_STATEMENT,
    MAX_TABLES_TO_ANALYZE,
    SQL_TRUNCATION_LONG,
    SQL_TRUNCATION_SHORT,
)
from dal.execution.dry_run import (
    OPERATION_SEQUENCE,
    DryRunTransaction,
    detect_non_rollbackable_operations,
    extract_dry_run_error,
    get_skip_reason,
    has_must_skip_warning,
)
from dal.execution.file_handler import read_sql_file
from dal.execution.models import (
    BatchExecuteResult,
    BatchQuery,
    BatchQueryResult,
    ColumnHint,
    DryRunStatementResult,
    ExecuteSqlFileResult,
    ExecuteSqlMultiResult,
    ExecuteSqlResult,
    ForeignKeyHint,
    MutationDryRunResult,
    MutationPreviewResult,
    QueryPlan,
    SchemaHint,
    SqlFileDryRunResult,
    SqlFilePreviewResult,
    StatementError,
    StatementOutcome,
    StatementPreview,
    TableSchemaHint,
)
from dal.execution.mutation import MUTATION_REQUIRED_MESSAGE, parse_mutation, with_returning
from dal.execution.result_formatter import (
    build_output_payload,
    count_statements_by_type,
    elapsed_ms,
    exceeds_output_limit,
    format_file_size,
    paginate_rows,
    pluralize_statements,
    start_timer,
    summarize_types,
    truncate_sql,
    write_output_file,
)
from dal.util.read_only import is_read_only_sql

logger = logging.getLogger(__name__)

MULTI_STATEMENT_PARAMS_MESSAGE = (
    "params not supported with allow_multiple_statements. "
    "Use separate execute_sql calls for parameterized queries."
)

_EXPLAINABLE_TYPES = {"SELECT", "INSERT", "UPDATE", "DELETE"}

_COLUMNS_QUERY = """
    SELECT
        column_name AS name,
        data_type AS type,
        is_nullable = 'YES' AS nullable
    FROM information_schema.columns
    WHERE table_schema = $1 AND table_name = $2
    ORDER BY ordinal_position
"""

_PRIMARY_KEY_QUERY = """
    SELECT a.attname AS column_name
    FROM pg_index i
    JOIN pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = ANY(i.indkey)
    JOIN pg_class c ON c.oid = i.indrelid
    JOIN pg_namespace n ON n.oid = c.relnamespace
    WHERE i.indisprimary
      AND n.nspname = $1
      AND c.relname = $2
"""

_FOREIGN_KEY_QUERY = """
    SELECT
        kcu.column_name,
        ccu.table_schema || '.' || ccu.table_name AS referenced_table,
        ccu.column_name AS referenced_column
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name
     AND tc.table_schema = kcu.table_schema
    JOIN information_schema.constraint_column_usage ccu
      ON ccu.constraint_name = tc.constraint_name
    WHERE tc.constraint_type = 'FOREIGN KEY'
      AND tc.table_schema = $1
      AND tc.table_name = $2
"""

_ROW_ESTIMATE_QUERY = """
    SELECT reltuples::bigint AS estimate
    FROM pg_class c
    JOIN pg_namespace n ON n.oid = c.relnamespace
    WHERE n.nspname = $1 AND c.relname = $2
"""


def validate_sql_argument(sql: Any, allow_large_script: bool = False) -> str:
    """Validate the ``sql`` argument of a tool call and return it."""
    if not isinstance(sql, str):
        raise ValueError("sql parameter is required and must be a string")
    if not sql.strip():
        raise ValueError("sql parameter cannot be empty")
    if not allow_large_script and len(sql) > DEFAULT_SQL_LENGTH_LIMIT:
        raise ValueError(
            f"SQL query exceeds {DEFAULT_SQL_LENGTH_LIMIT} characters. "
            "Use allow_large_script=true for deployment scripts."
        )
    return sql


def validate_params(params: Any) -> Optional[List[Any]]:
    if params is None:
        return None
    if not isinstance(params, (list, tuple)):
        raise ValueError("params must be an array")
    if len(params) > MAX_PARAMS:
        raise ValueError(f"Maximum {MAX_PARAMS} parameters allowed")
    return list(params)


def validate_int_option(
    value: Any, name: str, minimum: int, maximum: Optional[int], default: int
) -> int:
    """Validate an optional integer argument, returning ``default`` when absent."""
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    if maximum is None:
        if value < minimum:
            raise ValueError(f"{name} must be at least {minimum}")
    elif not minimum <= value <= maximum:
        raise ValueError(f"{name} must be between {minimum} and {maximum}")
    return value


def _capped(value: Optional[int], default: int, maximum: int) -> int:
    if value is None or value < 1:
        return default
    return min(value, maximum)


def _load_plan(value: Any) -> Any:
    return json.loads(value) if isinstance(value, str) else value


def _plan_rows(plan: Any) -> int:
    """Estimated rows of an ``EXPLAIN (FORMAT JSON)`` plan.

    Data-modifying plans report zero rows on their ModifyTable node, so the
    estimate falls back to the node feeding it.
    """
    try:
        node = plan[0]["Plan"]
    except (IndexError, KeyError, TypeError):
        return 0
    rows = node.get("Plan Rows") or 0
    if not rows and node.get("Plans"):
        rows = node["Plans"][0].get("Plan Rows") or 0
    return int(rows)


class SqlExecutionEngine:
    """Runs the SQL tool operations against a ``ConnectionPoolManager``."""

    def __init__(
        self, manager: ConnectionPoolManager, output_dir: Optional[str] = None
    ) -> None:
        """Bind the engine to a pool manager.

        Args:
            manager: Source of connections and transactions.
            output_dir: Directory for oversized result files (default: the
                system temporary directory).
        """
        self._manager = manager
        self._output_dir = output_dir

    @property
    def manager(self) -> ConnectionPoolManager:
        return self._manager

    async def execute_sql(
        self,
        sql: Any,
        params: Any = None,
        *,
        max_rows: Optional[int] = None,
        offset: Optional[int] = None,
        allow_large_script: bool = False,
        include_schema_hint: bool = False,
        allow_multiple_statements: bool = False,
        transaction_id: Optional[str] = None,
        override: Optional[ConnectionOverride] = None,
    ) -> Union[ExecuteSqlResult, ExecuteSqlMultiResult]:
        """Execute SQL and return one page of rows.

        A page whose serialized form exceeds the output limit is written to a
        file instead; the result then carries ``output_file`` and no rows.
        """
        sql = validate_sql_argument(sql, allow_large_script)
        params = validate_params(params)
        max_rows = validate_int_option(max_rows, "max_rows", 1, MAX_ROWS_LIMIT, MAX_ROWS_DEFAULT)
        offset = validate_int_option(offset, "offset", 0, None, 0)
        if transaction_id and override is not None and not override.is_empty:
            raise ValueError(TRANSACTION_OVERRIDE_MESSAGE)

        if allow_multiple_statements:
            if params:
                raise ValueError(MULTI_STATEMENT_PARAMS_MESSAGE)
            return await self._execute_multiple(
                sql, include_schema_hint, transaction_id, override
            )

        started = start_timer()
        if transaction_id:
            result = await self._manager.query_in_transaction(transaction_id, sql, params)
        else:
            result = await self._manager.query_with_override(sql, params, override)
        execution_time_ms = elapsed_ms(started)

        page, offset, has_more = paginate_rows(result.rows, offset, max_rows)
        schema_hint = await self.get_schema_hint(sql, override) if include_schema_hint else None
        connection = self._manager.resolve_target(override).as_dict() if override else None

        if exceeds_output_limit(page):
            output_file = write_output_file(
                build_output_payload(
                    total_rows=result.row_count,
                    rows=page,
                    offset=offset,
                    fields=result.fields,
                    execution_time_ms=execution_time_ms,
                ),
                self._output_dir,
            )
            logger.info(
                "Result page written to file",
                extra={"output_file": output_file, "rows": len(page)},
            )
            return ExecuteSqlResult(
                rows=[],
                row_count=result.row_count,
                fields=result.fields,
                execution_time_ms=execution_time_ms,
                offset=offset,
                has_more=has_more,
                output_file=output_file,
                truncated=True,
                schema_hint=schema_hint,
                connection=connection,
            )

        return ExecuteSqlResult(
            rows=page,
            row_count=result.row_count,
            fields=result.fields,
            execution_time_ms=execution_time_ms,
            offset=offset,
            has_more=has_more,
            schema_hint=schema_hint,
            connection=connection,
        )

    async def _execute_multiple(
        self,
        sql: str,
        include_schema_hint: bool,
        transaction_id: Optional[str],
        override: Optional[ConnectionOverride],
    ) -> ExecuteSqlMultiResult:
        started = start_timer()
        statements = parse_executable_statements(sql)
        for statement in statements:
            self._manager.ensure_read_only_allowed(statement.sql)

        outcomes: List[StatementOutcome] = []
        async with self._manager.connection(override, transaction_id) as lease:
            for index, statement in enumerate(statements, start=1):
                display_sql = truncate_sql(statement.sql, SQL_TRUNCATION_SHORT)
                try:
                    result = await run_statement(lease.connection, statement.sql)
                except Exception as exc:
                    if is_connection_error(exc):
                        raise
                    outcomes.append(
                        StatementOutcome(
                            statement_index=index,
                            sql=display_sql,
                            line_number=statement.line_number,
                            success=False,
                            error=str(exc),
                        )
                    )
                    continue
                outcomes.append(
                    StatementOutcome(
                        statement_index=index,
                        sql=display_sql,
                        line_number=statement.line_number,
                        success=True,
                        rows=result.rows[:MAX_ROWS_PER_STATEMENT],
                        row_count=result.row_count,
                    )
                )

        success_count = sum(1 for outcome in outcomes if outcome.success)
        schema_hint = await self.get_schema_hint(sql, override) if include_schema_hint else None
        return ExecuteSqlMultiResult(
            results=outcomes,
            total_statements=len(statements),
            success_count=success_count,
            failure_count=len(outcomes) - success_count,
            execution_time_ms=elapsed_ms(started),
            schema_hint=schema_hint,
        )

    async def get_schema_hint(
        self, sql: str, override: Optional[ConnectionOverride] = None
    ) -> SchemaHint:
        """Describe up to ``MAX_TABLES_TO_ANALYZE`` tables referenced by ``sql``.

        Tables whose metadata cannot be read are logged and skipped.
        """
        tables = extract_tables_from_sql(sql)[:MAX_TABLES_TO_ANALYZE]
        hints: List[TableSchemaHint] = []
        if not tables:
            return SchemaHint(tables=hints)

        async with self._manager.connection(override) as lease:
            conn = lease.connection
            for reference in tables:
                args = [reference.schema, reference.table]
                try:
                    columns = await run_statement(conn, _COLUMNS_QUERY, args)
                    primary_key = await run_statement(conn, _PRIMARY_KEY_QUERY, args)
                    foreign_keys = await run_statement(conn, _FOREIGN_KEY_QUERY, args)
                    estimate = await run_statement(conn, _ROW_ESTIMATE_QUERY, args)
                except Exception as exc:
                    if is_connection_error(exc):
                        raise
                    logger.warning(
                        "Could not get schema hint for %s.%s: %s",
                        reference.schema,
                        reference.table,
                        exc,
                    )
                    continue

                grouped: Dict[str, ForeignKeyHint] = {}
                for row in foreign_keys.rows:
                    hint = grouped.setdefault(
                        row["referenced_table"],
                        ForeignKeyHint(
                            columns=[],
                            referenced_table=row["referenced_table"],
                            referenced_columns=[],
                        ),
                    )
                    hint.columns.append(row["column_name"])
                    hint.referenced_columns.append(row["referenced_column"])

                hints.append(
                    TableSchemaHint(
                        schema_name=reference.schema,
                        table=reference.table,
                        columns=[ColumnHint(**row) for row in columns.rows],
                        primary_key=[row["column_name"] for row in primary_key.rows],
                        foreign_keys=list(grouped.values()) or None,
                        row_count_estimate=max(
                            int(estimate.rows[0]["estimate"] or 0) if estimate.rows else 0, 0
                        ),
                    )
                )
        return SchemaHint(tables=hints)

    async def explain_query(
        self,
        sql: Any,
        *,
        analyze: bool = False,
        buffers: bool = False,
        output_format: str = "json",
        override: Optional[ConnectionOverride] = None,
    ) -> QueryPlan:
        """Return the execution plan of ``sql``.

        ``EXPLAIN ANALYZE`` executes the statement, so it is only accepted for
        read-only SQL regardless of the access mode.
        """
        sql = validate_sql_argument(sql)
        if analyze:
            check = is_read_only_sql(sql)
            if not check.is_read_only:
                raise ValueError(
                    f"EXPLAIN ANALYZE is not allowed for write queries. {check.reason}"
                )

        explain_format = (output_format or "json").lower()
        if explain_format not in EXPLAIN_FORMATS:
            explain_format = "json"
        options = [f"FORMAT {explain_format.upper()}"]
        if analyze:
            options.append("ANALYZE")
            if buffers:
                options.append("BUFFERS")

        result = await self._manager.query_with_override(
            f"EXPLAIN ({', '.join(options)}) {sql}", None, override
        )
        if explain_format == "json":
            plan = _load_plan(result.rows[0]["QUERY PLAN"])
            return QueryPlan(plan=plan[0] if isinstance(plan, list) and plan else plan)
        return QueryPlan(plan="\n".join(str(row["QUERY PLAN"]) for row in result.rows))

    async def execute_sql_file(
        self,
        file_path: Any,
        *,
        use_transaction: bool = True,
        stop_on_error: bool = True,
        strip_patterns: Optional[Sequence[str]] = None,
        strip_as_regex: bool = False,
        validate_only: bool = False,
        override: Optional[ConnectionOverride] = None,
    ) -> ExecuteSqlFileResult:
        """Execute every statement of a ``.sql`` file on one connection.

        With ``use_transaction`` the file runs between BEGIN and COMMIT. A
        failure with ``stop_on_error`` rolls everything back; otherwise each
        statement runs under a savepoint so failures are collected and the
        remaining statements still commit.
        """
        started = start_timer()
        sql_file = read_sql_file(file_path, strip_patterns, strip_as_regex)
        statements = parse_executable_statements(sql_file.content)

        if validate_only:
            return ExecuteSqlFileResult(
                success=True,
                file_path=sql_file.path,
                file_size=sql_file.size,
                total_statements=len(statements),
                statements_executed=0,
                statements_failed=0,
                execution_time_ms=elapsed_ms(started),
                rows_affected=0,
                validate_only=True,
                preview=self._statement_previews(statements, len(statements)),
            )

        for statement in statements:
            self._manager.ensure_read_only_allowed(statement.sql)

        executed = 0
        failed = 0
        rows_affected = 0
        rolled_back = False
        fatal_error: Optional[str] = None
        errors: List[StatementError] = []
        use_savepoints = use_transaction and not stop_on_error

        async with self._manager.connection(override) as lease:
            conn = lease.connection
            try:
                if use_transaction:
                    await conn.execute("BEGIN")
                for index, statement in enumerate(statements, start=1):
                    sql = statement.sql.strip()
                    try:
                        if use_savepoints:
                            await conn.execute("SAVEPOINT mcp_file_statement")
                        result = await run_statement(conn, sql)
                        if use_savepoints:
                            await conn.execute("RELEASE SAVEPOINT mcp_file_statement")
                    except Exception as exc:
                        if use_savepoints and not is_connection_error(exc):
                            await conn.execute("ROLLBACK TO SAVEPOINT mcp_file_statement")
                        failed += 1
                        errors.append(
                            StatementError(
                                statement_index=index,
                                line_number=statement.line_number,
                                sql=truncate_sql(sql, SQL_TRUNCATION_SHORT),
                                error=str(exc),
                            )
                        )
                        if stop_on_error:
                            if use_transaction:
                                await conn.execute("ROLLBACK")
                                rolled_back = True
                            fatal_error = str(exc)
                            break
                        logger.warning(
                            "Statement %d at line %d failed: %s",
                            index,
                            statement.line_number,
                            exc,
                        )
                        continue
                    executed += 1
                    rows_affected += result.row_count

                if use_transaction and not rolled_back:
                    await conn.execute("COMMIT")
            except Exception as exc:
                logger.error("SQL file execution failed: %s", exc)
                if use_transaction and not rolled_back:
                    rolled_back = await _try_rollback(conn)
                fatal_error = str(exc)

        return ExecuteSqlFileResult(
            success=failed == 0 and fatal_error is None,
            file_path=sql_file.path,
            file_size=sql_file.size,
            total_statements=len(statements),
            statements_executed=executed,
            statements_failed=failed,
            execution_time_ms=elapsed_ms(started),
            rows_affected=rows_affected,
            error=fatal_error,
            errors=errors or None,
            rollback=rolled_back if fatal_error is not None else None,
        )

    def _statement_previews(
        self, statements: Sequence[ParsedStatement], limit: int
    ) -> List[StatementPreview]:
        return [
            StatementPreview(
                index=index,
                line_number=statement.line_number,
                sql=truncate_sql(statement.sql, SQL_TRUNCATION_LONG),
                type=detect_statement_type(statement.sql),
            )
            for index, statement in enumerate(statements[:limit], start=1)
        ]

    def preview_sql_file(
        self,
        file_path: Any,
        *,
        strip_patterns: Optional[Sequence[str]] = None,
        strip_as_regex: bool = False,
        max_statements: Optional[int] = None,
    ) -> SqlFilePreviewResult:
        """Parse a SQL file and report what it would do, without a connection."""
        limit = _capped(max_statements, DEFAULT_PREVIEW_STATEMENTS, MAX_PREVIEW_STATEMENTS)
        sql_file = read_sql_file(file_path, strip_patterns, strip_as_regex)
        statements = parse_executable_statements(sql_file.content)

        types = [detect_statement_type(statement.sql) for statement in statements]
        warnings: List[str] = []
        for index, (statement, statement_type) in enumerate(zip(statements, types), start=1):
            prefix = f"Statement {index} (line {statement.line_number})"
            if statement_type == "DROP":
                warnings.append(
                    f"{prefix}: DROP statement detected - will permanently remove database object"
                )
            elif statement_type == "TRUNCATE":
                warnings.append(
                    f"{prefix}: TRUNCATE statement detected - will delete all rows from table"
                )
            elif statement_type in ("DELETE", "UPDATE"):
                target = parse_mutation(statement.sql)
                if target is not None and target.where_clause is None:
                    if statement_type == "DELETE":
                        warnings.append(
                            f"{prefix}: DELETE without WHERE clause - will delete ALL rows from table"
                        )
                    else:
                        warnings.append(
                            f"{prefix}: UPDATE without WHERE clause - will update ALL rows in table"
                        )

        counts = count_statements_by_type(types)
        return SqlFilePreviewResult(
            file_path=sql_file.path,
            file_size=sql_file.size,
            file_size_formatted=format_file_size(sql_file.size),
            total_statements=len(statements),
            statements_by_type=counts,
            statements=self._statement_previews(statements, limit),
            warnings=warnings,
            summary=(
                f"File contains {pluralize_statements(len(statements))}: "
                f"{summarize_types(counts) or 'none'}"
            ),
        )

    async def dry_run_sql_file(
        self,
        file_path: Any,
        *,
        strip_patterns: Optional[Sequence[str]] = None,
        strip_as_regex: bool = False,
        max_statements: Optional[int] = None,
        stop_on_error: bool = False,
        override: Optional[ConnectionOverride] = None,
    ) -> SqlFileDryRunResult:
        """Execute a SQL file inside a transaction that is always rolled back.

        Statements that cannot run inside a transaction, or whose effects
        survive rollback, are skipped and reported instead of executed.
        """
        started = start_timer()
        limit = _capped(max_statements, DEFAULT_DRY_RUN_STATEMENTS, MAX_DRY_RUN_STATEMENTS)
        sql_file = read_sql_file(file_path, strip_patterns, strip_as_regex)
        statements = parse_executable_statements(sql_file.content)
        for statement in statements:
            self._manager.ensure_read_only_allowed(statement.sql)

        warnings_by_statement = [
            detect_non_rollbackable_operations(statement.sql, index, statement.line_number)
            for index, statement in enumerate(statements, start=1)
        ]
        types = [detect_statement_type(statement.sql) for statement in statements]
        results: List[DryRunStatementResult] = []

        async with self._manager.connection(override) as lease:
            async with DryRunTransaction(lease.connection) as transaction:
                for index, statement in enumerate(statements, start=1):
                    result = await self._dry_run_statement(
                        transaction,
                        index,
                        statement,
                        types[index - 1],
                        warnings_by_statement[index - 1],
                    )
                    results.append(result)
                    if stop_on_error and not result.success:
                        break

        success_count = sum(1 for r in results if r.success and not r.skipped)
        skipped_count = sum(1 for r in results if r.skipped)
        failure_count = sum(1 for r in results if not r.success)
        total_rows = sum(r.row_count or 0 for r in results)
        counts = count_statements_by_type(types)

        summary = (
            f"Dry-run of {pluralize_statements(len(statements))}: "
            f"{success_count} succeeded, {failure_count} failed"
        )
        if skipped_count:
            summary += f", {skipped_count} skipped (non-rollbackable)"
        summary += "."
        if counts:
            summary += f" Types: {summarize_types(counts)}."
        summary += f" Total rows affected: {total_rows}. All changes rolled back."

        return SqlFileDryRunResult(
            success=failure_count == 0,
            file_path=sql_file.path,
            file_size=sql_file.size,
            file_size_formatted=format_file_size(sql_file.size),
            total_statements=len(statements),
            success_count=success_count,
            failure_count=failure_count,
            skipped_count=skipped_count,
            total_rows_affected=total_rows,
            statements_by_type=counts,
            execution_time_ms=elapsed_ms(started),
            statement_results=results[:limit],
            non_rollbackable_warnings=[w for group in warnings_by_statement for w in group],
            summary=summary,
            rolled_back=True,
        )

    async def _dry_run_statement(
        self,
        transaction: DryRunTransaction,
        index: int,
        statement: ParsedStatement,
        statement_type: str,
        warnings: Sequence[Any],
    ) -> DryRunStatementResult:
        sql = statement.sql.strip()
        base = {
            "index": index,
            "line_number": statement.line_number,
            "sql": truncate_sql(sql, SQL_TRUNCATION_LONG),
            "type": statement_type,
        }

        if has_must_skip_warning(warnings):
            explain_plan = None
            main_type = statement_type.replace("WITH ", "")
            if main_type in _EXPLAINABLE_TYPES and any(
                w.operation == OPERATION_SEQUENCE for w in warnings
            ):
                explain_plan = await self._explain_in_transaction(transaction, sql)
            return DryRunStatementResult(
                **base,
                success=True,
                skipped=True,
                skip_reason=get_skip_reason(warnings),
                warnings=[w.message for w in warnings],
                explain_plan=explain_plan,
            )

        started = start_timer()
        try:
            result = await transaction.execute(sql)
        except Exception as exc:
            if is_connection_error(exc):
                raise
            return DryRunStatementResult(
                **base,
                success=False,
                error=extract_dry_run_error(exc),
                execution_time_ms=elapsed_ms(started),
                warnings=[w.message for w in warnings] or None,
            )
        return DryRunStatementResult(
            **base,
            success=True,
            row_count=result.row_count,
            rows=result.rows[:MAX_DRY_RUN_SAMPLE_ROWS] if result.rows else None,
            execution_time_ms=elapsed_ms(started),
            warnings=[w.message for w in warnings] or None,
        )

    async def _explain_in_transaction(
        self, transaction: DryRunTransaction, sql: str
    ) -> Optional[Any]:
        try:
            result = await transaction.execute(f"EXPLAIN (FORMAT JSON) {sql}")
        except Exception as exc:
            if is_connection_error(exc):
                raise
            logger.debug("EXPLAIN of skipped statement failed: %s", exc)
            return None
        if not result.rows:
            return None
        return _load_plan(result.rows[0]["QUERY PLAN"])

    async def mutation_preview(
        self,
        sql: Any,
        *,
        sample_size: Optional[int] = None,
        override: Optional[ConnectionOverride] = None,
    ) -> MutationPreviewResult:
        """Estimate the rows a mutation would touch and sample them, without executing it."""
        sql = validate_sql_argument(sql)
        target = parse_mutation(sql)
        if target is None:
            raise ValueError(MUTATION_REQUIRED_MESSAGE)
        limit = _capped(sample_size, DEFAULT_MUTATION_SAMPLE_SIZE, MAX_MUTATION_SAMPLE_SIZE)

        if target.mutation_type == "INSERT":
            estimated = 1
            try:
                explain = await self._manager.query_with_override(
                    f"EXPLAIN (FORMAT JSON) {sql}", None, override
                )
                estimated = _plan_rows(_load_plan(explain.rows[0]["QUERY PLAN"])) or 1
            except Exception as exc:
                if is_connection_error(exc):
                    raise
                logger.debug("EXPLAIN for INSERT preview failed: %s", exc)
            return MutationPreviewResult(
                mutation_type="INSERT",
                estimated_rows_affected=estimated,
                sample_affected_rows=[],
                target_table=target.table,
                warning="INSERT preview cannot show affected rows - they do not exist yet",
            )

        if not target.table:
            raise ValueError("Could not parse target table from SQL")

        estimated = 0
        try:
            explain = await self._manager.query_with_override(
                f"EXPLAIN (FORMAT JSON) {sql}", None, override
            )
            estimated = _plan_rows(_load_plan(explain.rows[0]["QUERY PLAN"]))
        except Exception as exc:
            if is_connection_error(exc):
                raise
            logger.debug("EXPLAIN for mutation preview failed: %s", exc)

        try:
            sample = await self._manager.query_with_override(
                target.sample_query(limit), None, override
            )
            if estimated == 0:
                count = await self._manager.query_with_override(
                    target.count_query(), None, override
                )
                estimated = int(count.rows[0]["count"]) if count.rows else 0
        except Exception as exc:
            if is_connection_error(exc):
                raise
            raise ValueError(f"Could not preview affected rows: {exc}") from exc

        return MutationPreviewResult(
            mutation_type=target.mutation_type,
            estimated_rows_affected=estimated,
            sample_affected_rows=sample.rows,
            target_table=target.table,
            where_clause=target.where_clause,
            warning=(
                None
                if target.where_clause
                else "No WHERE clause - ALL rows in the table will be affected!"
            ),
        )

    async def mutation_dry_run(
        self,
        sql: Any,
        *,
        sample_size: Optional[int] = None,
        override: Optional[ConnectionOverride] = None,
    ) -> MutationDryRunResult:
        """Execute a mutation inside a rolled-back transaction and report its effect.

        UPDATE and DELETE capture matching rows before execution; the mutation
        itself runs with ``RETURNING *`` to show the changed rows.
        """
        sql = validate_sql_argument(sql).strip()
        target = parse_mutation(sql)
        if target is None:
            raise ValueError(MUTATION_REQUIRED_MESSAGE)
        self._manager.ensure_read_only_allowed(sql)
        limit = _capped(sample_size, MAX_DRY_RUN_SAMPLE_ROWS, MAX_MUTATION_SAMPLE_SIZE)

        non_rollbackable = detect_non_rollbackable_operations(sql)
        if has_must_skip_warning(non_rollbackable):
            explain_plan = None
            try:
                explain = await self._manager.query_with_override(
                    f"EXPLAIN (FORMAT JSON) {sql}", None, override
                )
                explain_plan = _load_plan(explain.rows[0]["QUERY PLAN"])
            except Exception as exc:
                if is_connection_error(exc):
                    raise
                logger.debug("EXPLAIN of skipped mutation failed: %s", exc)
            return MutationDryRunResult(
                mutation_type=target.mutation_type,
                success=True,
                skipped=True,
                skip_reason=get_skip_reason(non_rollbackable),
                rows_affected=0,
                target_table=target.table,
                where_clause=target.where_clause,
                non_rollbackable_warnings=non_rollbackable,
                explain_plan=explain_plan,
            )

        warnings: List[str] = []
        before_rows: Optional[List[Dict[str, Any]]] = None
        affected_rows: Optional[List[Dict[str, Any]]] = None
        rows_affected = 0
        error = None
        success = False

        started = start_timer()
        async with self._manager.connection(override) as lease:
            async with DryRunTransaction(lease.connection) as transaction:
                if target.mutation_type in ("UPDATE", "DELETE") and target.table:
                    try:
                        before = await transaction.execute(target.sample_query(limit))
                        before_rows = before.rows
                    except Exception as exc:
                        if is_connection_error(exc):
                            raise
                        warnings.append(f"Could not capture before state: {exc}")

                add_returning = not target.has_returning and bool(target.table)
                try:
                    result = await transaction.execute(with_returning(sql) if add_returning else sql)
                    rows_affected = result.row_count
                    affected_rows = result.rows[:limit]
                    success = True
                except Exception as exc:
                    if is_connection_error(exc):
                        raise
                    if not add_returning:
                        error = extract_dry_run_error(exc)
                    else:
                        # RETURNING is not valid for every target (e.g. some views).
                        try:
                            result = await transaction.execute(sql)
                            rows_affected = result.row_count
                            success = True
                            if target.mutation_type == "UPDATE" and target.where_clause:
                                after = await transaction.execute(target.sample_query(limit))
                                affected_rows = after.rows
                        except Exception as retry_exc:
                            if is_connection_error(retry_exc):
                                raise
                            error = extract_dry_run_error(retry_exc)
        execution_time_ms = elapsed_ms(started)

        if target.mutation_type != "INSERT" and not target.where_clause:
            warnings.append("No WHERE clause - ALL rows in the table would be affected!")

        return MutationDryRunResult(
            mutation_type=target.mutation_type,
            success=success,
            rows_affected=rows_affected,
            execution_time_ms=execution_time_ms,
            before_rows=before_rows,
            affected_rows=affected_rows,
            target_table=target.table,
            where_clause=target.where_clause,
            error=error,
            non_rollbackable_warnings=non_rollbackable or None,
            warnings=warnings or None,
        )

    async def batch_execute(
        self,
        queries: Any,
        *,
        stop_on_error: bool = False,
        override: Optional[ConnectionOverride] = None,
    ) -> BatchExecuteResult:
        """Run independent named queries concurrently and report each by name."""
        batch = _validate_batch(queries)
        started = start_timer()

        span = trace.get_current_span()
        if span and span.is_recording():
            span.set_attribute("dal.batch.size", len(batch))

        async def run(query: BatchQuery) -> BatchQueryResult:
            query_started = start_timer()
            try:
                result = await self._manager.query_with_override(
                    query.sql, query.params, override
                )
            except Exception as exc:
                return BatchQueryResult(
                    success=False,
                    error=str(exc),
                    execution_time_ms=elapsed_ms(query_started),
                )
            return BatchQueryResult(
                success=True,
                rows=result.rows,
                row_count=result.row_count,
                execution_time_ms=elapsed_ms(query_started),
            )

        outcomes = await asyncio.gather(*(run(query) for query in batch))

        results: Dict[str, BatchQueryResult] = {}
        for query, outcome in zip(batch, outcomes):
            results[query.name] = outcome
            if stop_on_error and not outcome.success:
                break

        success_count = sum(1 for outcome in results.values() if outcome.success)
        return BatchExecuteResult(
            total_queries=len(batch),
            success_count=success_count,
            failure_count=len(results) - success_count,
            total_execution_time_ms=elapsed_ms(started),
            results=results,
        )


def _validate_batch(queries: Any) -> List[BatchQuery]:
    if not isinstance(queries, (list, tuple)):
        raise ValueError("queries parameter is required and must be an array")
    if not queries:
        raise ValueError("queries array cannot be empty")
    if len(queries) > MAX_BATCH_QUERIES:
        raise ValueError(f"Maximum {MAX_BATCH_QUERIES} queries allowed in a batch")

    batch: List[BatchQuery] = []
    seen = set()
    for raw in queries:
        query = raw.model_dump() if isinstance(raw, BatchQuery) else raw
        if not isinstance(query, dict):
            raise ValueError("Each query must have a name")
        name = query.get("name")
        if not isinstance(name, str) or not name:
            raise ValueError("Each query must have a name")
        sql = query.get("sql")
        if not isinstance(sql, str) or not sql:
            raise ValueError(f'Query "{name}" must have sql')
        if name in seen:
            raise ValueError(f"Duplicate query name: {name}")
        seen.add(name)
        batch.append(BatchQuery(name=name, sql=sql, params=validate_params(query.get("params"))))
    return batch


async def _try_rollback(conn: Any) -> bool:
    try:
        await conn.execute("ROLLBACK")
    except Exception as exc:
        logger.warning("Rollback after failed SQL file execution failed: %s", exc)
        return False
    return True
