"""Operation-specific Rich renderers for ServiceResult.

Each renderer writes to a Rich Console (backed by StringIO). The caller
extracts the rendered text via ``get_output(console)``.

Renderers are dispatched by ``result.op`` in :func:`render_result`.
Unknown ops fall through to a generic key-value renderer.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from twoine.output.console import create_console, get_output, style_for_status

if TYPE_CHECKING:
    from rich.console import Console

    from twoine.orchestrators.result import ServiceResult


# ── Public API ────────────────────────────────────────────────────────


def render_result(result: ServiceResult, *, verbose: bool = False) -> str:
    """Render a ServiceResult to a styled string via Rich."""
    console = create_console()

    if result.ok:
        renderer = _OP_RENDERERS.get(result.op, _render_generic)
        renderer(result, console, verbose=verbose)
        if verbose:
            _render_meta(console, result)
    else:
        _render_error(result, console, verbose=verbose)

    return get_output(console).rstrip("\n")


def render_quiet(result: ServiceResult) -> str:
    """Render minimal output for ``--quiet`` mode."""
    if not result.ok:
        msg = result.error.message if result.error else "Unknown error"
        return f"ERROR: {result.op}: {msg}"

    items = result.data.get("items")
    if items and isinstance(items, list):
        ids = [str(item["id"]) for item in items if isinstance(item, dict) and "id" in item]
        return "\n".join(ids)
    credentials = result.data.get("credentials")
    if isinstance(credentials, dict):
        return str(credentials.get("password", ""))
    return f"OK: {result.op}"


# ── Helpers ───────────────────────────────────────────────────────────


def _status_line(console: Console, result: ServiceResult) -> None:
    label = Text("OK", style="tw.ok")
    op = Text(f"  {result.op}", style="tw.op")
    console.print(label, op, end="")
    console.print()


def _field(console: Console, key: str, value: Any) -> None:
    """Print a single indented key-value field."""
    k = Text(f"  {key}: ", style="tw.key")
    if isinstance(value, (dict, list)):
        v = Text(json.dumps(value, separators=(",", ":")))
    elif key == "id" or key.endswith("_id"):
        v = Text(str(value), style="tw.id")
    elif key in ("status", "current"):
        v = Text(str(value), style=style_for_status(str(value)))
    elif key in ("port", "ports"):
        v = Text(str(value), style="tw.port")
    else:
        v = Text(str(value))
    console.print(k, v, sep="", end="")
    console.print()


def _status_text(value: Any) -> Text:
    return Text(str(value), style=style_for_status(str(value)))


def _render_meta(console: Console, result: ServiceResult) -> None:
    """Print meta block including telemetry span tree (verbose only)."""
    if not result.meta:
        return

    console.print()
    console.print(Text("  meta:", style="dim"))

    for k, v in result.meta.items():
        if k == "telemetry":
            _render_telemetry_tree(console, v, indent=4)
        else:
            console.print(f"    {k}: {v}")


def _render_telemetry_tree(
    console: Console,
    span_data: dict[str, Any],
    indent: int = 4,
) -> None:
    """Render a hierarchical span tree with color-coded timing."""
    prefix = " " * indent
    name = span_data.get("name", "?")
    duration = span_data.get("duration_ms", 0.0)

    if duration > 1000:
        style = "bold red"
    elif duration > 100:
        style = "yellow"
    else:
        style = "dim"

    line = f"{prefix}[{style}]{duration:>8.2f}ms[/{style}]  {name}"
    annotations = span_data.get("annotations")
    if annotations:
        line += "  (" + ", ".join(f"{k}={v}" for k, v in annotations.items()) + ")"
    console.print(line)

    for child in span_data.get("children", []):
        _render_telemetry_tree(console, child, indent=indent + 4)


def _table(columns: list[tuple[str, str]], rows: list[list[Any]]) -> Table:
    """Plain Rich table; *columns* are ``(header, style)`` pairs."""
    table = Table(show_header=True, show_lines=False, pad_edge=False, expand=False)
    for header, style in columns:
        table.add_column(header, style=style or None, no_wrap=header == "ID")
    for row in rows:
        table.add_row(*row)
    return table


# ── Error renderer ────────────────────────────────────────────────────


def _render_error(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    err = result.error
    msg = err.message if err else "Unknown error"
    label = Text("ERROR", style="tw.error")
    op = Text(f"  {result.op}", style="tw.op")
    code = Text(f" [{err.code}] " if err else " ", style="dim")
    console.print(label, op, code, msg)

    if verbose and err and err.detail:
        console.print(Text("  detail:", style="dim"))
        for k, v in err.detail.items():
            console.print(f"    {k}: {v}")
    for warning in result.warnings:
        console.print(Text(f"  warning: {warning}", style="tw.warning"))


# ── Mutation renderers ────────────────────────────────────────────────


def _render_entity(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Render the headline fields of the entity a create/get op returned."""
    _status_line(console, result)
    for key in ("site", "service", "domain", "database"):
        entity = result.data.get(key)
        if isinstance(entity, dict):
            for field in ("id", "name", "hostname", "type", "status", "port", "target_port"):
                if field in entity and entity[field] is not None:
                    _field(console, field, entity[field])
            if "port_range" in entity:
                rng = entity["port_range"]
                _field(console, "ports", f"{rng['start']}-{rng['end']}")
            if "unit" in entity:
                _field(console, "unit", entity["unit"]["name"])
            if "connection_url" in entity:
                _field(console, "connection_url", entity["connection_url"])
            if verbose:
                console.print(Panel(json.dumps(entity, indent=2), title=key, expand=False))
        elif entity is not None:
            _field(console, key, entity)
    for key, value in result.data.items():
        if key not in ("site", "service", "domain", "database", "credentials"):
            _field(console, key, value)
    _render_credentials(result, console)


def _render_credentials(result: ServiceResult, console: Console) -> None:
    credentials = result.data.get("credentials")
    if not isinstance(credentials, dict):
        return
    console.print()
    console.print(Text("  Credentials (shown once, store them now):", style="tw.secret"))
    for key in ("username", "password", "connection_string"):
        _field(console, key, credentials.get(key, ""))


def _render_batch(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Render site-wide start/stop/restart outcomes."""
    _status_line(console, result)
    _field(console, "site", result.data.get("site", ""))
    rows: list[list[Any]] = [
        [item["name"], Text("ok", style="tw.ok"), "changed" if item.get("changed") else ""]
        for item in result.data.get("succeeded", [])
    ]
    rows.extend(
        [item["name"], Text("failed", style="tw.error"), str(item.get("error", ""))]
        for item in result.data.get("failed", [])
    )
    if rows:
        console.print(_table([("Service", "tw.name"), ("Result", ""), ("Detail", "")], rows))
    if result.data.get("partial"):
        console.print(Text("  partial failure", style="tw.warning"))


# ── List renderers ────────────────────────────────────────────────────


def _render_sites(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    items = result.data.get("items", [])
    columns = [("ID", "tw.id"), ("Name", "tw.name"), ("Status", ""), ("Ports", "tw.port")]
    columns.append(("OS user", ""))
    rows = [
        [i["id"], i["name"], _status_text(i["status"]), i["ports"], i["os_user"]] for i in items
    ]
    console.print(_table(columns, rows))
    console.print(f"\n{result.data.get('count', len(items))} sites")


def _render_services(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    items = result.data.get("items", [])
    columns = [
        ("ID", "tw.id"),
        ("Name", "tw.name"),
        ("Port", "tw.port"),
        ("Runtime", ""),
        ("Current", ""),
        ("Desired", ""),
        ("Priority", ""),
    ]
    rows = [
        [
            i["id"],
            i["name"],
            str(i["port"]),
            i["runtime"],
            _status_text(i["current"]),
            i["desired"],
            str(i["start_priority"]),
        ]
        for i in items
    ]
    console.print(_table(columns, rows))
    count = result.data.get("count", len(items))
    console.print(f"\n{count} services in {result.data.get('site')}")


def _render_domains(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    items = result.data.get("items", [])
    columns = [
        ("ID", "tw.id"),
        ("Hostname", "tw.name"),
        ("Type", ""),
        ("Status", ""),
        ("Target", "tw.port"),
        ("SSL", ""),
    ]
    rows = [
        [
            i["id"],
            i["hostname"],
            i["type"],
            _status_text(i["status"]),
            i["target"],
            "yes" if i["ssl"] else "no",
        ]
        for i in items
    ]
    console.print(_table(columns, rows))
    console.print(f"\n{result.data.get('count', len(items))} domains")


def _render_databases(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    items = result.data.get("items", [])
    columns = [
        ("ID", "tw.id"),
        ("Name", "tw.name"),
        ("Type", ""),
        ("Status", ""),
        ("Host", ""),
        ("User", ""),
    ]
    rows = [
        [
            i["id"],
            i["name"],
            i["type"] + (" (external)" if i["external"] else ""),
            _status_text(i["status"]),
            f"{i['host']}:{i['port']}",
            i["username"],
        ]
        for i in items
    ]
    console.print(_table(columns, rows))
    console.print(f"\n{result.data.get('count', len(items))} databases")


def _render_custom_commands(
    result: ServiceResult, console: Console, *, verbose: bool = False
) -> None:
    items = result.data.get("items", [])
    columns = [("Name", "tw.name"), ("Command", ""), ("Timeout", ""), ("Requires stop", "")]
    rows = [
        [i["name"], i["command"], f"{i['timeout']}s", "yes" if i.get("requires_stop") else "no"]
        for i in items
    ]
    console.print(_table(columns, rows))


# ── Detail renderers ──────────────────────────────────────────────────


def _render_site_info(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    site = result.data["site"]
    rng = site["port_range"]
    lines = [
        f"status: {site['status']}",
        f"ports: {rng['start']}-{rng['end']}",
        f"os user: {site['os_user']['username']}",
        f"root: {site['paths']['root']}",
    ]
    if site.get("sftp_username"):
        lines.append(f"sftp: {site['sftp_username']}")
    domains = result.data.get("domains", [])
    if domains:
        lines.append(f"domains: {', '.join(domains)}")
    console.print(Panel("\n".join(lines), title=site["name"], expand=False))

    services = result.data.get("services", [])
    if services:
        rows = [
            [s["name"], str(s["port"]), _status_text(s["active"]), str(s["pid"] or "")]
            for s in services
        ]
        columns = [("Service", "tw.name"), ("Port", "tw.port"), ("Active", ""), ("PID", "")]
        console.print(_table(columns, rows))
    databases = result.data.get("databases", [])
    if databases:
        rows = [[d["name"], d["type"], _status_text(d["status"])] for d in databases]
        console.print(_table([("Database", "tw.name"), ("Type", ""), ("Status", "")], rows))


def _render_dns(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    _status_line(console, result)
    _field(console, "domain", result.data["domain"])
    records = result.data.get("records", [])
    if records:
        rows = [[r["type"], r["name"], r["value"]] for r in records]
        console.print(_table([("Type", ""), ("Name", "tw.name"), ("Value", "")], rows))
    console.print()
    console.print(result.data.get("instructions", ""))


def _render_cascade(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    _status_line(console, result)
    _field(console, "action", result.data.get("action"))
    for item in result.data.get("processed", []):
        console.print(f"  {item['name']}: {item['action']}")
    for item in result.data.get("errors", []):
        console.print(f"  [tw.error]error[/tw.error] {item['name']}: {item['error']}")


def _render_upgrade(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    _status_line(console, result)
    d = result.data
    for key in ("pending_count", "applied_count", "current", "head", "backup_path", "message"):
        if key in d:
            _field(console, key, d[key])
    if verbose and d.get("pending"):
        console.print()
        for p in d["pending"]:
            console.print(f"  {p['revision']}: {p['description']}")


# ── Generic fallback ──────────────────────────────────────────────────


def _render_generic(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Fallback renderer: status line + all data as key-value pairs."""
    _status_line(console, result)
    for key, value in result.data.items():
        _field(console, key, value)


# ── Dispatch table ────────────────────────────────────────────────────

_OP_RENDERERS: dict[str, Any] = {
    # Sites
    "create_site": _render_entity,
    "get_site": _render_entity,
    "list_sites": _render_sites,
    "get_site_info": _render_site_info,
    "start_site": _render_batch,
    "stop_site": _render_batch,
    "restart_site": _render_batch,
    # Services
    "create_service": _render_entity,
    "get_service": _render_entity,
    "list_services": _render_services,
    "list_custom_commands": _render_custom_commands,
    # Domains
    "add_domain": _render_entity,
    "get_domain": _render_entity,
    "assign_domain": _render_entity,
    "setup_platform_domain": _render_entity,
    "update_platform_domain": _render_entity,
    "list_domains": _render_domains,
    "dns_info": _render_dns,
    # Databases
    "create_database": _render_entity,
    "link_external_database": _render_entity,
    "get_database": _render_entity,
    "reset_password": _render_entity,
    "list_databases": _render_databases,
    "handle_site_deletion": _render_cascade,
    # Upgrade
    "upgrade": _render_upgrade,
}
