"""Limits shared by the execution engine and the tool surface."""

from dal.util.read_only import MAX_SQL_LENGTH_FOR_VALIDATION

# Serialized size of a paginated result above which it is written to a file.
MAX_OUTPUT_CHARS = 50_000

MAX_ROWS_DEFAULT = 1_000
MAX_ROWS_LIMIT = 100_000

DEFAULT_SQL_LENGTH_LIMIT = MAX_SQL_LENGTH_FOR_VALIDATION
MAX_PARAMS = 100

MAX_SQL_FILE_SIZE = 50 * 1024 * 1024

MAX_DRY_RUN_SAMPLE_ROWS = 10
MAX_DRY_RUN_STATEMENTS = 200
DEFAULT_DRY_RUN_STATEMENTS = 50

MAX_PREVIEW_STATEMENTS = 100
DEFAULT_PREVIEW_STATEMENTS = 20

MAX_BATCH_QUERIES = 20

MAX_MUTATION_SAMPLE_SIZE = 20
DEFAULT_MUTATION_SAMPLE_SIZE = 5

MAX_ROWS_PER_STATEMENT = 100

SQL_TRUNCATION_SHORT = 200
SQL_TRUNCATION_LONG = 300

MAX_TABLES_TO_ANALYZE = 10

EXPLAIN_FORMATS = ("text", "json", "yaml", "xml")
