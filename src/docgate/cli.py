"""docgate CLI: setup, the gateway daemon, and owner/requestor commands."""

import asyncio
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Coroutine

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from docgate.client import DocGateClient
from docgate.config import DocGateConfig, get_config_path, load_config, save_config
from docgate.errors import DocGateError

app = typer.Typer(
    name="docgate",
    help="Document sharing with owner approval and OTP-verified downloads",
)
console = Console()


def _client(config: DocGateConfig) -> DocGateClient:
    return DocGateClient(config.socket_path)


def _run(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run a client call, turning failures into CLI errors."""
    try:
        return asyncio.run(coro)
    except DocGateError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)
    except (ConnectionRefusedError, FileNotFoundError):
        console.print("[red]Gateway is not running. Start it with 'docgate start'.[/red]")
        raise typer.Exit(1)


def _owner(config: DocGateConfig) -> str:
    if not config.owner_id:
        console.print("[red]No owner configured. Run 'docgate init' first.[/red]")
        raise typer.Exit(1)
    return config.owner_id


def _short_date(value: str | None) -> str:
    if not value:
        return "-"
    try:
        return datetime.fromisoformat(value).strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return value


STATUS_COLORS = {
    "pending": "yellow",
    "approved": "green",
    "denied": "red",
    "revoked": "magenta",
}


def _status(value: str) -> str:
    color = STATUS_COLORS.get(value, "white")
    return f"[{color}]{value}[/{color}]"


def download_target(filename: str, output: Path | None = None) -> Path:
    """Where retrieve saves a file; a server-supplied name never leaves the cwd."""
    if output is not None:
        return output
    name = Path(filename.replace("\\", "/")).name
    if name in ("", ".", ".."):
        name = "document"
    return Path(name)


@app.command()
def init(
    owner_email: str = typer.Option(None, "--email", "-e", help="Owner email address"),
    owner_name: str = typer.Option(None, "--name", "-n", help="Owner display name"),
):
    """Initialize docgate configuration."""
    console.print("[bold]docgate Initialization[/bold]\n")

    config_path = get_config_path()
    if config_path.exists():
        if not typer.confirm("Config already exists. Overwrite?"):
            raise typer.Abort()

    config = DocGateConfig(
        owner_id=str(uuid.uuid4()),
        owner_email=owner_email or typer.prompt("Owner email"),
        owner_name=owner_name or typer.prompt("Owner name", default=""),
    )
    for directory in (config.storage_dir, config.state_dir, config.audit_log_path.parent):
        directory.mkdir(parents=True, exist_ok=True)

    save_config(config)
    console.print(f"[green]Created config at {config_path}[/green]")
    console.print("\nNext steps:")
    console.print("  1. Run [bold]docgate start[/bold] to start the gateway")
    console.print("  2. Run [bold]docgate upload FILE --public[/bold] to share a document")


@app.command()
def start(
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """Run the gateway daemon in the foreground."""
    from docgate.gateway import AccessGateway

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config = load_config()
    gateway = AccessGateway.from_config(config)

    console.print("[bold]Starting docgate gateway...[/bold]")
    console.print("Press Ctrl+C to stop.\n")
    try:
        asyncio.run(gateway.start())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


@app.command()
def status():
    """Show docgate status."""
    config_path = get_config_path()
    console.print("[bold]docgate Status[/bold]\n")

    if config_path.exists():
        console.print(f"  Config:  [green]{config_path}[/green]")
    else:
        console.print("  Config:  [yellow]defaults[/yellow] (run 'docgate init')")

    config = load_config()
    console.print(f"  Owner:   {config.owner_email or '-'}")
    console.print(f"  Storage: {config.storage_dir}")

    running = _run(_client(config).ping()) if config.socket_path.exists() else False
    if running:
        console.print(f"  Gateway: [green]running[/green] ({config.socket_path})")
    else:
        console.print("  Gateway: [red]stopped[/red]")


# Owner commands

@app.command()
def upload(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="File to upload (pdf, xlsx, docx)"),
    description: str = typer.Option(None, "--description", "-d", help="Short description"),
    public: bool = typer.Option(False, "--public", help="List in the public catalog right away"),
):
    """Upload a document."""
    config = load_config()
    doc = _run(_client(config).upload_document(
        path,
        owner_id=_owner(config),
        owner_email=config.owner_email,
        owner_name=config.owner_name,
        description=description,
        public=public,
    ))
    console.print(f"[green]Uploaded {doc['filename']}[/green] ({doc['file_size']} bytes)")
    console.print(f"  Document ID: [bold]{doc['id']}[/bold]")
    console.print(f"  Visibility:  {doc['visibility_status']}")


@app.command()
def documents():
    """List your documents."""
    config = load_config()
    docs = _run(_client(config).list_documents(_owner(config)))

    table = Table(title="Documents")
    table.add_column("ID", style="dim")
    table.add_column("Filename")
    table.add_column("Visibility")
    table.add_column("Grants")
    table.add_column("Active")
    table.add_column("Uploaded", style="dim")

    for doc in docs:
        table.add_row(
            doc["id"],
            doc["filename"],
            doc["visibility_status"],
            str(doc["access_grants_count"]),
            str(doc["active_access_grants_count"]),
            _short_date(doc["uploaded_at"]),
        )
    if not docs:
        table.add_row("-", "[dim]no documents yet[/dim]", "-", "-", "-", "-")
    console.print(table)


@app.command()
def visibility(
    document_id: str = typer.Argument(...),
    value: str = typer.Argument(..., help="public or hidden"),
):
    """Show or hide a document in the public catalog."""
    config = load_config()
    if value not in ("public", "hidden"):
        console.print(f"[red]Unknown visibility: {value}[/red]")
        raise typer.Exit(1)
    doc = _run(_client(config).set_visibility(document_id, value, _owner(config)))
    console.print(f"{doc['filename']} is now [bold]{doc['visibility_status']}[/bold]")


@app.command()
def delete(document_id: str = typer.Argument(...)):
    """Delete a document (all access must be revoked first)."""
    config = load_config()
    if not typer.confirm(f"Delete document {document_id}?"):
        raise typer.Abort()
    _run(_client(config).delete_document(document_id, _owner(config)))
    console.print("[yellow]Document deleted.[/yellow]")


@app.command()
def requests(
    history: bool = typer.Option(False, "--history", help="Show decided requests instead of pending"),
    email: str = typer.Option(None, "--email", help="Filter by requestor email"),
    filename: str = typer.Option(None, "--filename", help="Filter by filename"),
    page: int = typer.Option(1, help="Page number"),
):
    """List access requests on your documents."""
    config = load_config()
    result = _run(_client(config).list_requests(
        _owner(config), history=history, search_email=email, filter_filename=filename, page=page,
    ))

    table = Table(title="Request History" if history else "Pending Requests")
    table.add_column("Grant ID", style="dim")
    table.add_column("Document")
    table.add_column("Requestor")
    table.add_column("Purpose")
    table.add_column("Status")
    table.add_column("Expires", style="dim")

    for grant in result["data"]:
        table.add_row(
            grant["id"],
            grant["filename"],
            grant["requestor_email"],
            grant["request_purpose"][:40],
            _status(grant["status"]),
            _short_date(grant.get("expiry_date")),
        )
    console.print(table)
    console.print(f"[dim]Page {result['page']} of {max(result['total_pages'], 1)} ({result['total']} total)[/dim]")


@app.command()
def grants(document_id: str = typer.Argument(...)):
    """Show active, expired and revoked grants for a document."""
    config = load_config()
    buckets = _run(_client(config).document_grants(document_id, _owner(config)))

    for name in ("active", "expired", "revoked"):
        table = Table(title=name.capitalize())
        table.add_column("Grant ID", style="dim")
        table.add_column("Requestor")
        table.add_column("Expires")
        for grant in buckets[name]:
            table.add_row(grant["id"], grant["requestor_email"], _short_date(grant.get("expiry_date")))
        if not buckets[name]:
            table.add_row("-", "[dim]none[/dim]", "-")
        console.print(table)


@app.command()
def approve(
    grant_id: str = typer.Argument(...),
    expires: str = typer.Option(..., "--expires", help="Expiry date (ISO, e.g. 2026-12-31)"),
    message: str = typer.Option(None, "--message", "-m", help="Message to the requestor"),
):
    """Approve a pending request."""
    config = load_config()
    grant = _run(_client(config).approve(grant_id, expires, message, _owner(config)))
    console.print(f"[green]Approved[/green] {grant['requestor_email']} until {_short_date(grant['expiry_date'])}")


@app.command()
def deny(
    grant_id: str = typer.Argument(...),
    reason: str = typer.Option(None, "--reason", "-r", help="Reason shown to the requestor"),
):
    """Deny a pending request."""
    config = load_config()
    grant = _run(_client(config).deny(grant_id, reason, _owner(config)))
    console.print(f"[red]Denied[/red] {grant['requestor_email']}")


@app.command()
def revoke(
    grant_id: str = typer.Argument(...),
    message: str = typer.Option(None, "--message", "-m", help="Message to the requestor"),
):
    """Revoke an access grant."""
    config = load_config()
    grant = _run(_client(config).revoke(grant_id, message, _owner(config)))
    console.print(f"[yellow]Revoked[/yellow] {grant['requestor_email']}")


@app.command("revoke-all")
def revoke_all(
    document_id: str = typer.Argument(...),
    message: str = typer.Option(None, "--message", "-m", help="Message to the requestors"),
):
    """Revoke every active grant on a document."""
    config = load_config()
    if not typer.confirm("Revoke all active access to this document?"):
        raise typer.Abort()
    revoked = _run(_client(config).bulk_revoke(document_id, message, _owner(config)))
    console.print(f"[yellow]Revoked {len(revoked)} grant(s).[/yellow]")


@app.command()
def trail(page: int = typer.Option(1, help="Page number")):
    """Show approve/deny/revoke decisions."""
    config = load_config()
    result = _run(_client(config).audit_trail(_owner(config), page))

    table = Table(title="Decisions")
    table.add_column("Time", style="dim")
    table.add_column("Action")
    table.add_column("Document")
    table.add_column("Requestor")
    table.add_column("Details")
    for entry in result["data"]:
        table.add_row(
            _short_date(entry["timestamp"]),
            entry["action"],
            entry["filename"],
            entry["requestor_email"],
            entry["details"],
        )
    console.print(table)


@app.command()
def audit(
    document_id: str = typer.Argument(...),
    page: int = typer.Option(1, help="Page number"),
):
    """View the download audit log of a document."""
    config = load_config()
    result = _run(_client(config).download_audit(document_id, page))

    table = Table(title="Download Audit Log")
    table.add_column("Time", style="dim")
    table.add_column("Event")
    table.add_column("Requestor")
    table.add_column("Details")
    for entry in result["data"]:
        event = entry["action"]
        if event.endswith("failed") or event == "session_expired":
            event = f"[red]{event}[/red]"
        elif event in ("download_completed", "otp_verified"):
            event = f"[green]{event}[/green]"
        table.add_row(_short_date(entry["created_at"]), event, entry["requestor_email"], entry.get("details") or "-")
    console.print(table)
    console.print(f"[dim]Page {result['page']} of {max(result['total_pages'], 1)}[/dim]")


# Requestor commands

@app.command()
def catalog(
    query: str = typer.Argument(None, help="Filename search"),
    page: int = typer.Option(1, help="Page number"),
):
    """Browse publicly listed documents."""
    config = load_config()
    result = _run(_client(config).list_public_documents(query, page))

    table = Table(title="Public Documents")
    table.add_column("ID", style="dim")
    table.add_column("Filename")
    table.add_column("Type")
    table.add_column("Owner")
    table.add_column("Description")
    for doc in result["data"]:
        table.add_row(doc["id"], doc["filename"], doc["file_type"], doc["owner_email"], doc.get("description") or "-")
    console.print(table)


@app.command("request")
def request_cmd(
    document_id: str = typer.Argument(...),
    email: str = typer.Option(..., "--email", "-e", help="Your email address"),
    purpose: str = typer.Option(..., "--purpose", "-p", help="Why you need the document"),
    name: str = typer.Option(None, "--name", help="Your name"),
    organization: str = typer.Option(None, "--org", help="Your organization"),
):
    """Request access to a public document."""
    config = load_config()
    result = _run(_client(config).submit_request(document_id, email, purpose, name, organization))
    console.print(Panel(
        f"Request UUID: [bold]{result['request_uuid']}[/bold]\n"
        f"Status page:  {result['retrieval_page_url']}\n\n"
        "Keep the UUID: you need it with your email to retrieve the document.",
        title=f"Access requested: {result['filename']}",
    ))


@app.command("request-status")
def request_status(request_uuid: str = typer.Argument(...)):
    """Check the status of an access request."""
    config = load_config()
    result = _run(_client(config).request_status(request_uuid))
    console.print(f"  Document: {result['filename']}")
    console.print(f"  Status:   {_status(result['status'])}")
    if result.get("expiry_date"):
        console.print(f"  Expires:  {_short_date(result['expiry_date'])}")
    if result.get("approval_message"):
        console.print(f"  Message:  {result['approval_message']}")
    if result.get("denial_reason"):
        console.print(f"  Reason:   {result['denial_reason']}")


@app.command()
def retrieve(
    request_uuid: str = typer.Argument(...),
    email: str = typer.Option(..., "--email", "-e", help="Email used for the request"),
    output: Path = typer.Option(None, "--output", "-o", help="Where to save the file"),
):
    """Verify your identity with an OTP and download the document."""
    config = load_config()
    client = _client(config)

    info = _run(client.initiate_verification(request_uuid, email))
    console.print(f"[bold]Retrieving {info['document_name']}[/bold]\n")

    sent = _run(client.request_otp(request_uuid, email))
    console.print(f"OTP sent to {sent['otp_sent_to']} (valid {sent['expires_in'] // 60} minutes).\n")

    max_attempts = config.otp_max_attempts
    session = None
    for attempt in range(max_attempts):
        code = typer.prompt("OTP")
        try:
            session = asyncio.run(client.verify_otp(request_uuid, email, code.strip()))
            break
        except DocGateError as e:
            console.print(f"[red]{e.message}[/red]")
            if attempt == max_attempts - 1:
                console.print("[red]Too many failed attempts. Run retrieve again for a new OTP.[/red]")
                raise typer.Exit(1)

    filename, content = _run(client.download(session["download_session_token"]))
    target = download_target(filename, output)
    target.write_bytes(content)
    console.print(f"\n[green]Saved {len(content)} bytes to {target}[/green]")


@app.command()
def version():
    """Show version information."""
    from docgate import __version__
    console.print(f"docgate v{__version__}")


if __name__ == "__main__":
    app()
