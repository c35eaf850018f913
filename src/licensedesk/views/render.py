from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

import typer

from licensedesk.models.api_key import ApiKey, CreatedApiKey
from licensedesk.models.dashboard import DashboardSummary
from licensedesk.models.license import License, LicenseStatus
from licensedesk.views.list_controller import LicenseListController

_BADGE_COLORS = {
    "default": typer.colors.GREEN,
    "destructive": typer.colors.RED,
    "outline": typer.colors.YELLOW,
    "secondary": typer.colors.WHITE,
}

_BAR_WIDTH = 30


def status_variant(status: LicenseStatus | str) -> str:
    value = status.value if isinstance(status, LicenseStatus) else str(status)
    if value == "active":
        return "default"
    if value in {"expired", "revoked"}:
        return "destructive"
    if value in {"pending", "inactive"}:
        return "outline"
    return "secondary"


def status_badge(status: LicenseStatus | str) -> str:
    value = status.value if isinstance(status, LicenseStatus) else str(status)
    return typer.style(value, fg=_BADGE_COLORS[status_variant(status)])


def format_date(value: Optional[datetime], *, never: str = "Never") -> str:
    if value is None:
        return never
    return value.strftime("%Y-%m-%d")


def format_datetime(value: Optional[datetime], *, never: str = "Never") -> str:
    if value is None:
        return never
    return value.strftime("%Y-%m-%d %H:%M")


def _visible_len(text: str) -> int:
    return len(typer.unstyle(text))


def render_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], _visible_len(cell))

    def _line(cells: Sequence[str]) -> str:
        padded = [cell + " " * (widths[i] - _visible_len(cell)) for i, cell in enumerate(cells)]
        return "  ".join(padded).rstrip()

    lines = [_line(headers), "  ".join("-" * w for w in widths)]
    lines.extend(_line(row) for row in rows)
    return "\n".join(lines)


def render_error(message: str) -> str:
    return "\n".join(["Error Fetching Data", f"  {message}"])


LICENSE_COLUMNS: List[Tuple[str, Callable[[License], str]]] = [
    ("License Key", lambda lic: lic.license_key),
    ("Status", lambda lic: status_badge(lic.status)),
    ("Type", lambda lic: lic.type),
    ("Product", lambda lic: lic.product_name),
    ("Customer Email", lambda lic: lic.customer_email or "-"),
    ("Expires At", lambda lic: format_date(lic.expires_at)),
    ("Created At", lambda lic: format_date(lic.created_at)),
]


def render_licenses(controller: LicenseListController) -> str:
    headers = [title for title, _ in LICENSE_COLUMNS]
    parts: List[str] = []

    if controller.error is not None:
        parts.append(render_error(controller.error.message or "Failed to load licenses."))

    if controller.is_loading:
        parts.append(render_table(headers, []) + "\nLoading data...")
    elif controller.rows:
        rows = [[cell(lic) for _, cell in LICENSE_COLUMNS] for lic in controller.rows]
        parts.append(render_table(headers, rows))
    else:
        parts.append(render_table(headers, []) + "\nNo results.")

    page_count = controller.page_count
    if not controller.is_loading and page_count > 0:
        state = controller.state
        parts.append(
            f"Page {state.page_index + 1} of {page_count} "
            f"({controller.total_count} total, {state.page_size} per page)"
        )
    return "\n".join(parts)


def render_api_keys(keys: Sequence[ApiKey]) -> str:
    headers = ["ID", "Prefix", "Description", "Status", "Created At", "Last Used"]
    if not keys:
        return render_table(headers, []) + "\nNo API keys found."
    rows = [
        [
            key.id,
            key.prefix,
            key.description,
            typer.style("Enabled", fg=typer.colors.GREEN)
            if key.is_enabled
            else typer.style("Revoked", fg=typer.colors.RED),
            format_datetime(key.created_at),
            format_datetime(key.last_used_at),
        ]
        for key in keys
    ]
    return render_table(headers, rows)


def render_created_key(created: CreatedApiKey) -> str:
    return "\n".join(
        [
            "Your new API key has been generated. Please copy and store it securely.",
            "You will not be able to see this key again.",
            "",
            f"Prefix: {created.prefix}",
            f"API Key: {created.reveal()}",
            "",
            "Treat this API key like a password. Do not share it or commit it to version control.",
        ]
    )


def _render_counts(title: str, counts: dict, *, capitalize: bool = False) -> str:
    lines = [title]
    if not counts:
        lines.append("  No data.")
        return "\n".join(lines)
    peak = max(counts.values()) or 1
    label_width = max(len(str(name)) for name in counts)
    for name, value in counts.items():
        label = str(name).capitalize() if capitalize else str(name)
        bar = "#" * max(1 if value else 0, round(value / peak * _BAR_WIDTH))
        lines.append(f"  {label.ljust(label_width)}  {str(value).rjust(5)}  {bar}")
    return "\n".join(lines)


def render_dashboard(summary: DashboardSummary) -> str:
    soon = summary.expiring_soon
    lines = [
        f"Total Licenses: {summary.total_licenses}",
        f"Expiring Soon ({soon.period_days} days): {soon.count}",
    ]
    nxt = soon.next_to_expire
    if nxt is not None:
        lines.append(
            f"  Next to expire: {nxt.license_key} ({nxt.product_name}) on {format_date(nxt.expires_at)}"
        )
    else:
        lines.append("  Next to expire: None")
    return "\n\n".join(
        [
            "\n".join(lines),
            _render_counts("Licenses by Status", summary.status_counts, capitalize=True),
            _render_counts("Licenses by Type", summary.type_counts),
            _render_counts("Licenses by Product", summary.product_counts),
        ]
    )
