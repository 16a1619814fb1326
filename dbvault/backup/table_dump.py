"""Render a single table's rows as SQL, CSV or JSON."""

import json
from typing import Any, Iterable, Sequence

CONTENT_TYPES = {
    "sql": "application/sql",
    "csv": "text/csv",
    "json": "application/json",
}


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def escape_csv(value: str) -> str:
    if "," in value or '"' in value or "\n" in value:
        return '"' + value.replace('"', '""') + '"'
    return value


def _csv_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return escape_csv("true" if value else "false")
    if isinstance(value, (dict, list)):
        return escape_csv(json.dumps(value, separators=(",", ":")))
    return escape_csv(str(value))


def render_csv(columns: Sequence[dict], rows: Sequence[dict]) -> str:
    names = [c["name"] for c in columns]
    lines = [",".join(escape_csv(n) for n in names)]
    for row in rows:
        lines.append(",".join(_csv_cell(row.get(n)) for n in names))
    return "\n".join(lines)


def render_json(rows: Sequence[dict]) -> str:
    return json.dumps(list(rows), indent=2, default=str)


def sql_literal(value: Any) -> str:
    if value is None:
        return "NULL"
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (dict, list)):
        text = json.dumps(value, separators=(",", ":"))
    else:
        text = str(value)
    return "'" + text.replace("'", "''") + "'"


def build_create_statement(table_name: str, columns: Sequence[dict]) -> str:
    definitions = []
    for column in columns:
        definition = f"{quote_identifier(column['name'])} {column.get('type') or ''}".rstrip()
        if column.get("pk"):
            definition += " PRIMARY KEY"
        if column.get("notnull"):
            definition += " NOT NULL"
        if column.get("dflt_value") is not None:
            definition += f" DEFAULT {column['dflt_value']}"
        definitions.append(definition)
    body = ",\n  ".join(definitions)
    return f"CREATE TABLE IF NOT EXISTS {quote_identifier(table_name)} (\n  {body}\n);"


def build_insert_statement(table_name: str, columns: Sequence[dict], row: dict) -> str:
    names = ", ".join(quote_identifier(c["name"]) for c in columns)
    values = ", ".join(sql_literal(row.get(c["name"])) for c in columns)
    return f"INSERT INTO {quote_identifier(table_name)} ({names}) VALUES ({values});"


def render_sql(
    table_name: str,
    columns: Sequence[dict],
    rows: Sequence[dict],
    index_statements: Iterable[str] = (),
) -> str:
    parts = [build_create_statement(table_name, columns), ""]
    parts.extend(build_insert_statement(table_name, columns, row) for row in rows)
    indexes = [s if s.rstrip().endswith(";") else f"{s};" for s in index_statements]
    if indexes:
        parts.append("")
        parts.extend(indexes)
    return "\n".join(parts)


def render_table(
    fmt: str,
    table_name: str,
    columns: Sequence[dict],
    rows: Sequence[dict],
    index_statements: Iterable[str] = (),
) -> tuple[str, str]:
    """Return ``(content, content_type)`` for the requested format."""
    if fmt == "json":
        return render_json(rows), CONTENT_TYPES["json"]
    if fmt == "csv":
        return render_csv(columns, rows), CONTENT_TYPES["csv"]
    return render_sql(table_name, columns, rows, index_statements), CONTENT_TYPES["sql"]
