from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
import typer

from licensedesk import __version__
from licensedesk.config import Settings, get_settings
from licensedesk.context import new_correlation_id
from licensedesk.exceptions import ConsoleError, SessionExpiredError
from licensedesk.integrations.api_client import ApiClient, make_api_client
from licensedesk.models import (
    ApiKeyCreate,
    LicenseCreate,
    LicenseEdit,
    LicenseStatus,
    LoginRequest,
    validate_form,
)
from licensedesk.security.auth import (
    AuthState,
    CredentialProvider,
    JsonFileStorage,
    OIDCSessionProvider,
    RouteDecision,
    SessionStore,
)
from licensedesk.services import (
    ApiKeyService,
    AuthService,
    DashboardService,
    LicenseService,
    summarize_expiring,
)
from licensedesk.views.list_controller import (
    LicenseListController,
    ListQueryState,
    SortDirection,
    normalize_filters,
)
from licensedesk.views.render import (
    format_date,
    render_api_keys,
    render_created_key,
    render_dashboard,
    render_licenses,
)

T = TypeVar("T")

app = typer.Typer(add_completion=False, help="License administration console")
licenses_app = typer.Typer(help="List, create, edit and revoke licenses")
apikeys_app = typer.Typer(help="Issue and revoke API keys")
app.add_typer(licenses_app, name="licenses")
app.add_typer(apikeys_app, name="apikeys")

EXIT_FAILURE = 1
EXIT_SIGNED_OUT = 2


@dataclass
class Console:
    settings: Settings
    credentials: CredentialProvider
    client: ApiClient
    store: Optional[SessionStore] = None
    oidc: Optional[OIDCSessionProvider] = None

    @property
    def licenses(self) -> LicenseService:
        return LicenseService(self.client)

    @property
    def apikeys(self) -> ApiKeyService:
        return ApiKeyService(self.client)

    @property
    def dashboard(self) -> DashboardService:
        return DashboardService(self.client)

    def signed_in(self) -> bool:
        if self.store is not None:
            return self.store.route_guard() is RouteDecision.ALLOW
        session = self.oidc.session if self.oidc else None
        return bool(session and session.access_token and not session.error)


def open_console(
    *,
    oidc: Optional[bool] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Console:
    settings = get_settings()
    storage = JsonFileStorage(settings.SESSION_FILE)
    use_oidc = oidc if oidc is not None else settings.AUTH_MODE.strip().lower() == "oidc"
    if use_oidc:
        provider = OIDCSessionProvider.from_settings(settings, storage=storage, transport=transport)
        return Console(
            settings=settings,
            credentials=provider,
            client=make_api_client(provider, transport=transport),
            oidc=provider,
        )
    store = SessionStore(storage, name=settings.SESSION_STORAGE_KEY)
    store.rehydrate()
    return Console(
        settings=settings,
        credentials=store,
        client=make_api_client(store, transport=transport),
        store=store,
    )


def _on_session_change(state: AuthState) -> None:
    if not state.is_authenticated:
        typer.echo("Session ended. Run `licensedesk login` to sign in again.", err=True)


def _run(
    action: Callable[[Console], Awaitable[T]],
    *,
    protected: bool = True,
    oidc: Optional[bool] = None,
) -> T:
    new_correlation_id()
    try:
        console = open_console(oidc=oidc)
    except ConsoleError as exc:
        typer.echo(f"Error: {exc.message}", err=True)
        raise typer.Exit(EXIT_FAILURE)

    if protected:
        if not console.signed_in():
            typer.echo("Not signed in. Run `licensedesk login` first.", err=True)
            raise typer.Exit(EXIT_SIGNED_OUT)
        if console.store is not None:
            console.store.subscribe(_on_session_change)

    async def _main() -> T:
        async with console.client:
            return await action(console)

    try:
        return asyncio.run(_main())
    except SessionExpiredError as exc:
        typer.echo(f"Error: {exc.message}", err=True)
        raise typer.Exit(EXIT_SIGNED_OUT)
    except ConsoleError as exc:
        typer.echo(f"Error: {exc.message}", err=True)
        raise typer.Exit(EXIT_FAILURE)


def _validated(form_cls, **data: Any):
    try:
        return validate_form(form_cls, **data)
    except ConsoleError as exc:
        typer.echo(f"Error: {exc.message}", err=True)
        raise typer.Exit(EXIT_FAILURE)


@app.callback()
def _root(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    level = "DEBUG" if verbose else get_settings().LOG_LEVEL.upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def version() -> None:
    typer.echo(__version__)


@app.command()
def login(
    username: Optional[str] = typer.Option(None, "--username", "-u", help="Username"),
    password: Optional[str] = typer.Option(None, "--password", "-p", help="Password"),
    oidc: bool = typer.Option(False, "--oidc", help="Sign in through the identity provider"),
) -> None:
    """
    Sign in and keep the session for later commands.

    The password variant posts to `/auth/login`; `--oidc` (or
    LICENSEDESK_AUTH_MODE=oidc) runs the authorization-code flow and asks
    for the code shown after the provider redirects back.
    """
    use_oidc = oidc or get_settings().AUTH_MODE.strip().lower() == "oidc"
    if use_oidc:

        async def _oidc_login(console: Console) -> str:
            auth = await console.oidc.authorization_request()
            typer.echo("Open this URL in a browser and sign in:")
            typer.echo(auth.url)
            code = typer.prompt("Authorization code")
            session = await console.oidc.exchange_code(code.strip(), code_verifier=auth.code_verifier)
            user = session.user or {}
            return user.get("loginName") or user.get("email") or user.get("id") or "unknown"

        who = _run(_oidc_login, protected=False, oidc=True)
        typer.echo(f"Signed in as {who}")
        return

    if username is None:
        username = typer.prompt("Username")
    if password is None:
        password = typer.prompt("Password", hide_input=True)
    form = _validated(LoginRequest, username=username, password=password)

    async def _password_login(console: Console) -> None:
        await AuthService(console.client, console.store).login(form)

    _run(_password_login, protected=False, oidc=False)
    typer.echo(f"Signed in as {form.username}")


@app.command()
def logout() -> None:
    console = open_console()
    if console.store is not None:
        console.store.clear_auth()
    elif console.oidc is not None:
        console.oidc.sign_out()
    typer.echo("Signed out.")


@app.command()
def whoami() -> None:
    console = open_console()
    if not console.signed_in():
        typer.echo("Not signed in.")
        raise typer.Exit(EXIT_SIGNED_OUT)
    if console.store is not None:
        user = console.store.user or {}
        typer.echo(f"User: {user.get('id') or 'unknown'}")
        typer.echo(f"Role: {user.get('role') or '-'}")
        return
    session = console.oidc.session
    user = session.user or {}
    typer.echo(f"User: {user.get('loginName') or user.get('email') or user.get('id')}")
    typer.echo(f"Name: {user.get('name') or '-'}")
    typer.echo(f"Token expires: {datetime.fromtimestamp(session.expires_at):%Y-%m-%d %H:%M}")


@licenses_app.command("list")
def licenses_list(
    page: int = typer.Option(1, min=1, help="Page number (1-based)"),
    page_size: Optional[int] = typer.Option(None, "--page-size", min=1, help="Rows per page"),
    sort: Optional[str] = typer.Option(None, help="Sort column, e.g. status, expires_at, created_at"),
    desc: bool = typer.Option(False, "--desc", help="Sort descending"),
    status: Optional[LicenseStatus] = typer.Option(None, help="Filter by status"),
    email: Optional[str] = typer.Option(None, help="Filter by customer email substring"),
    product: Optional[str] = typer.Option(None, help="Filter by product name"),
    license_type: Optional[str] = typer.Option(None, "--type", help="Filter by license type"),
) -> None:
    async def _list(console: Console) -> tuple[str, bool]:
        state = ListQueryState(
            page_index=page - 1,
            page_size=page_size or console.settings.DEFAULT_PAGE_SIZE,
            sort_column=sort or None,
            sort_direction=(SortDirection.DESC if desc else SortDirection.ASC) if sort else None,
            filters=normalize_filters(
                {"status": status, "email": email, "product_name": product, "type": license_type}
            ),
        )
        controller = LicenseListController(console.licenses, state=state)
        try:
            await controller.refresh()
        finally:
            controller.close()
        if isinstance(controller.error, SessionExpiredError):
            raise controller.error
        return render_licenses(controller), controller.error is not None

    output, failed = _run(_list)
    typer.echo(output)
    if failed:
        raise typer.Exit(EXIT_FAILURE)


@licenses_app.command("create")
def licenses_create(
    license_type: str = typer.Option(..., "--type", help="License type"),
    product: str = typer.Option(..., help="Product name"),
    customer_name: Optional[str] = typer.Option(None, help="Customer name"),
    customer_email: Optional[str] = typer.Option(None, help="Customer email"),
    metadata: Optional[str] = typer.Option(None, help="Metadata as JSON"),
    expires_at: Optional[datetime] = typer.Option(None, help="Expiry date (UTC)"),
) -> None:
    form = _validated(
        LicenseCreate,
        type=license_type,
        product_name=product,
        customer_name=customer_name,
        customer_email=customer_email,
        metadata=metadata,
        expires_at=expires_at,
    )
    created = _run(lambda console: console.licenses.create(form))
    typer.echo("License created successfully!")
    typer.echo(f"License key: {created.license_key}")


@licenses_app.command("update")
def licenses_update(
    license_id: str = typer.Argument(..., help="License id"),
    license_type: Optional[str] = typer.Option(None, "--type", help="License type"),
    product: Optional[str] = typer.Option(None, help="Product name"),
    customer_name: Optional[str] = typer.Option(None, help="Customer name; empty clears"),
    customer_email: Optional[str] = typer.Option(None, help="Customer email; empty clears"),
    metadata: Optional[str] = typer.Option(None, help="Metadata as JSON; empty clears"),
    expires_at: Optional[datetime] = typer.Option(None, help="New expiry date (UTC)"),
    clear_expiry: bool = typer.Option(False, "--clear-expiry", help="Remove the expiry date"),
) -> None:
    given = {
        "type": license_type,
        "product_name": product,
        "customer_name": customer_name,
        "customer_email": customer_email,
        "metadata": metadata,
        "expires_at": expires_at,
    }
    data = {k: v for k, v in given.items() if v is not None}
    if clear_expiry:
        data["expires_at"] = None
    form = _validated(LicenseEdit, **data)
    changes = form.to_payload()
    if not changes:
        typer.echo("No changes detected.")
        return
    updated = _run(lambda console: console.licenses.update(license_id, changes))
    typer.echo(f"License {updated.license_key} updated.")


@licenses_app.command("set-status")
def licenses_set_status(
    license_id: str = typer.Argument(..., help="License id"),
    status: LicenseStatus = typer.Argument(..., help="New status"),
) -> None:
    _run(lambda console: console.licenses.change_status(license_id, status))
    typer.echo(f"License status changed to {status.value}")


@licenses_app.command("revoke")
def licenses_revoke(
    license_id: str = typer.Argument(..., help="License id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    if not yes:
        typer.confirm(
            f"Are you absolutely sure? License {license_id} will be revoked and "
            "agents will no longer be able to validate it.",
            abort=True,
        )
    _run(lambda console: console.licenses.revoke(license_id))
    typer.echo(f"License {license_id} has been revoked.")


@licenses_app.command("expiring")
def licenses_expiring(
    days: Optional[int] = typer.Option(None, min=1, help="Window in days"),
) -> None:
    """Count licenses expiring within the window, from the full license list."""
    period = days or get_settings().EXPIRING_SOON_DAYS

    async def _expiring(console: Console):
        service = console.licenses
        licenses = []
        offset, limit = 0, 100
        while True:
            page = await service.list(
                {"limit": limit, "offset": offset, "sort_by": "expires_at", "sort_order": "ASC"}
            )
            licenses.extend(page.licenses)
            offset += len(page.licenses)
            if not page.licenses or offset >= page.total_count:
                break
        return summarize_expiring(licenses, period_days=period)

    soon = _run(_expiring)
    typer.echo(f"Expiring Soon ({soon.period_days} days): {soon.count}")
    nxt = soon.next_to_expire
    if nxt is not None:
        typer.echo(f"Next to expire: {nxt.license_key} ({nxt.product_name}) on {format_date(nxt.expires_at)}")


@apikeys_app.command("list")
def apikeys_list() -> None:
    keys = _run(lambda console: console.apikeys.list())
    typer.echo(render_api_keys(keys))


@apikeys_app.command("create")
def apikeys_create(
    description: str = typer.Argument(..., help="What the key is used for"),
) -> None:
    form = _validated(ApiKeyCreate, description=description)
    created = _run(lambda console: console.apikeys.create(form))
    typer.echo("API Key generated successfully!")
    typer.echo(render_created_key(created))


@apikeys_app.command("revoke")
def apikeys_revoke(
    key_id: str = typer.Argument(..., help="API key id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    if not yes:
        typer.confirm(
            f"Revoke API key {key_id}? Clients using it will stop working.", abort=True
        )
    _run(lambda console: console.apikeys.revoke(key_id))
    typer.echo(f"API Key ({key_id}) revoked successfully.")


@app.command()
def dashboard() -> None:
    summary = _run(lambda console: console.dashboard.summary())
    typer.echo(render_dashboard(summary))


def main() -> None:
    app()
