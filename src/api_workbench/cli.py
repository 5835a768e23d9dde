"""CLI entry point for api-workbench."""

from contextlib import contextmanager
from pathlib import Path

import click

from api_workbench.catalog import SpecDocument, parse_document
from api_workbench.collection import CollectionStore, read_archive
from api_workbench.config import Settings
from api_workbench.errors import BindingError, WorkbenchError
from api_workbench.execution import ExecutionResult, Failure
from api_workbench.log import configure_logging
from api_workbench.request import RequestOverrides, StaticAuth
from api_workbench.workspace import Workspace

EXIT_EXECUTION_FAILED = 2


@contextmanager
def _reported_errors():
    """Turn core errors into click errors with a field-addressable message."""
    try:
        yield
    except BindingError as e:
        raise click.ClickException(f"[{e.field}] {e}") from e
    except WorkbenchError as e:
        raise click.ClickException(str(e)) from e


def _parse_spec(spec_path: Path) -> SpecDocument:
    with _reported_errors():
        return parse_document(spec_path.read_bytes())


def _read_collection(path: Path | None) -> CollectionStore:
    if path is None or not path.exists():
        return CollectionStore()
    with _reported_errors():
        return CollectionStore.load(path.read_bytes())


def _write_collection(path: Path | None, store: CollectionStore) -> None:
    if path is None:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    with _reported_errors():
        path.write_bytes(store.export())


def _parse_params(params: tuple[str, ...]) -> dict[str, str | list[str]]:
    """Parse repeated ``name=value`` options; a repeated name collects a list."""
    values: dict[str, str | list[str]] = {}
    for item in params:
        name, sep, value = item.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected name=value, got {item!r}", param_hint="--param")
        if name in values:
            existing = values[name]
            values[name] = (existing if isinstance(existing, list) else [existing]) + [value]
        else:
            values[name] = value
    return values


def _parse_headers(headers: tuple[str, ...]) -> list[tuple[str, str]]:
    result = []
    for item in headers:
        name, sep, value = item.partition(":")
        if not sep or not name.strip():
            raise click.BadParameter(f"expected 'Name: value', got {item!r}", param_hint="--header")
        result.append((name.strip(), value.strip()))
    return result


def _read_body(body: str | None, body_file: Path | None) -> str | None:
    if body is not None and body_file is not None:
        raise click.UsageError("Use either --body or --body-file, not both.")
    if body_file is not None:
        return body_file.read_text(encoding="utf-8")
    return body


def _echo_result(result: ExecutionResult, include: bool) -> int:
    """Print a result; returns the process exit code for it."""
    if isinstance(result, Failure):
        click.echo(f"FAILED ({result.kind.value}): {result.message}", err=True)
        return EXIT_EXECUTION_FAILED

    click.echo(
        f"{result.http_version} {result.status_code} {result.reason_phrase} "
        f"({result.elapsed * 1000:.0f} ms)",
        err=not include,
    )
    if include:
        for key, value in result.headers:
            click.echo(f"{key}: {value}")
        click.echo()
    click.echo(result.text())
    if result.truncated:
        click.echo("[body truncated]", err=True)
    return 0


def _settings(settings: Settings, insecure: bool) -> Settings:
    return settings.model_copy(update={"verify_tls": False}) if insecure else settings


@click.group()
@click.option("--log-level", default=None, type=click.Choice(["debug", "info", "warning", "error"]), help="Log verbosity (stderr).")
@click.option("--log-format", default=None, type=click.Choice(["text", "json"]), help="Log output format.")
@click.pass_context
def main(ctx: click.Context, log_level: str | None, log_format: str | None):
    """API Workbench: explore and call the operations of an OpenAPI document."""
    with _reported_errors():
        settings = Settings.from_env(log_level=log_level, log_format=log_format)
    configure_logging(settings.log_level, settings.log_format)
    ctx.obj = settings


@main.command()
@click.argument("spec_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def operations(spec_path: Path):
    """List the operations declared by an API document."""
    document = _parse_spec(spec_path)
    click.echo(f"{document.title or spec_path.name} ({len(document.operations)} operations)")
    for op in document.list_operations():
        click.echo(f"{op.method:<7} {op.path}  {op.summary}".rstrip())


@main.command()
@click.argument("spec_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("method")
@click.argument("path")
def show(spec_path: Path, method: str, path: str):
    """Show the parameters and body of one operation."""
    document = _parse_spec(spec_path)
    with _reported_errors():
        op = document.get_operation(method, path)

    click.echo(f"{op.method} {op.path}")
    if op.summary:
        click.echo(f"  {op.summary}")
    for param in op.parameters:
        flag = "required" if param.required else "optional"
        click.echo(
            f"  {param.location:<6} {param.name}: {document.schemas.describe(param.schema_handle)} "
            f"({flag}, style={param.style}{', explode' if param.explode else ''})"
        )
    if op.request_body is not None:
        flag = "required" if op.request_body.required else "optional"
        click.echo(f"  body   {op.request_body.content_type} ({flag})")


@main.command()
@click.argument("spec_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("method")
@click.argument("path")
@click.option("-p", "--param", "params", multiple=True, help="Parameter value as name=value (repeatable).")
@click.option("--body", default=None, help="Request body text.")
@click.option("--body-file", default=None, type=click.Path(exists=True, dir_okay=False, path_type=Path), help="Read the request body from a file.")
@click.option("--content-type", default=None, help="Override the body content type.")
@click.option("--base-url", default=None, help="Server URL; defaults to the document's first server.")
@click.option("-H", "--header", "headers", multiple=True, help="Extra header as 'Name: value' (repeatable).")
@click.option("--bearer", default=None, help="Send an Authorization: Bearer token.")
@click.option("--timeout", default=None, type=float, help="Timeout in seconds.")
@click.option("--insecure", is_flag=True, help="Skip TLS certificate verification.")
@click.option("-i", "--include", is_flag=True, help="Print response headers.")
@click.option("--collection", default=None, type=click.Path(dir_okay=False, path_type=Path), help="Collection file to record the call in.")
@click.option("--label", default=None, help="Label for the history entry.")
@click.option("--save", "save_as", default=None, help="Also save the call as a named request.")
@click.pass_obj
def call(
    settings: Settings,
    spec_path: Path,
    method: str,
    path: str,
    params: tuple[str, ...],
    body: str | None,
    body_file: Path | None,
    content_type: str | None,
    base_url: str | None,
    headers: tuple[str, ...],
    bearer: str | None,
    timeout: float | None,
    insecure: bool,
    include: bool,
    collection: Path | None,
    label: str | None,
    save_as: str | None,
):
    """Bind parameters, send one request, and record it."""
    values = _parse_params(params)
    extra_headers = _parse_headers(headers)
    body_text = _read_body(body, body_file)
    overrides = RequestOverrides(
        headers=tuple(extra_headers),
        auth=StaticAuth.bearer(bearer) if bearer else None,
    )

    with Workspace(_settings(settings, insecure), store=_read_collection(collection)) as workspace:
        with _reported_errors():
            workspace.load_spec(spec_path.read_bytes(), name=spec_path.name)
            request = workspace.prepare(method, path, values, body_text, base_url, overrides, content_type)
            entry = workspace.execute(request, timeout, label=label)
            if save_as:
                workspace.save_request(
                    save_as, method, path, values, body_text, content_type, base_url, extra_headers
                )
        _write_collection(collection, workspace.store)

    code = _echo_result(entry.result, include)
    if code:
        raise SystemExit(code)


@main.command()
@click.argument("collection", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def history(collection: Path):
    """List recorded executions, oldest first."""
    store = _read_collection(collection)
    for index, entry in enumerate(store.list()):
        result = entry.result
        outcome = str(result.status_code) if result.outcome == "response" else f"FAILED {result.kind.value}"
        label = f"  [{entry.label}]" if entry.label else ""
        click.echo(
            f"{index:>3}  {entry.recorded_at:%Y-%m-%d %H:%M:%S}  "
            f"{entry.request.method:<7} {entry.request.url}  -> {outcome}{label}"
        )


@main.command()
@click.argument("collection", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("index", type=int)
@click.option("--timeout", default=None, type=float, help="Timeout in seconds.")
@click.option("--insecure", is_flag=True, help="Skip TLS certificate verification.")
@click.option("-i", "--include", is_flag=True, help="Print response headers.")
@click.pass_obj
def replay(settings: Settings, collection: Path, index: int, timeout: float | None, insecure: bool, include: bool):
    """Send a recorded request again and record the new outcome."""
    with Workspace(_settings(settings, insecure), store=_read_collection(collection)) as workspace:
        try:
            handle = workspace.replay(index, timeout)
        except IndexError:
            raise click.ClickException(f"No history entry {index}") from None
        result = handle.result()
        # the completion callback has already recorded the entry
        _write_collection(collection, workspace.store)

    code = _echo_result(result, include)
    if code:
        raise SystemExit(code)


@main.command()
@click.argument("collection", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("index", type=int)
def forget(collection: Path, index: int):
    """Delete one history entry."""
    store = _read_collection(collection)
    try:
        entry = store.remove(index)
    except IndexError:
        raise click.ClickException(f"No history entry {index}") from None
    _write_collection(collection, store)
    click.echo(f"Removed {entry.request.method} {entry.request.url}")


@main.command()
@click.argument("collection", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def saved(collection: Path):
    """List saved requests grouped by folder."""
    store = _read_collection(collection)
    for folder in store.folders():
        click.echo(f"{folder or '(no folder)'}:")
        for request in store.list_requests(folder):
            click.echo(f"  {request.name}  {request.operation}")


@main.command("import-requests")
@click.argument("spec_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("collection", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_obj
def import_requests(settings: Settings, spec_path: Path, collection: Path):
    """Save the requests stored in a Postman collection as named requests."""
    with Workspace(settings, store=_read_collection(collection)) as workspace:
        with _reported_errors():
            workspace.load_spec(spec_path.read_bytes(), name=spec_path.name)
            imported = workspace.import_presets()
        _write_collection(collection, workspace.store)
    click.echo(f"Imported {len(imported)} requests into {collection}")


@main.command("run-saved")
@click.argument("spec_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("collection", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("name")
@click.option("-p", "--param", "params", multiple=True, help="Override a saved value as name=value.")
@click.option("--base-url", default=None, help="Server URL override.")
@click.option("--timeout", default=None, type=float, help="Timeout in seconds.")
@click.option("--insecure", is_flag=True, help="Skip TLS certificate verification.")
@click.option("-i", "--include", is_flag=True, help="Print response headers.")
@click.pass_obj
def run_saved(
    settings: Settings,
    spec_path: Path,
    collection: Path,
    name: str,
    params: tuple[str, ...],
    base_url: str | None,
    timeout: float | None,
    insecure: bool,
    include: bool,
):
    """Execute a saved request against the current document."""
    values = _parse_params(params)
    with Workspace(_settings(settings, insecure), store=_read_collection(collection)) as workspace:
        with _reported_errors():
            workspace.load_spec(spec_path.read_bytes(), name=spec_path.name)
            request = workspace.prepare_saved(name, values, base_url=base_url)
            entry = workspace.execute(request, timeout, label=name)
        _write_collection(collection, workspace.store)

    code = _echo_result(entry.result, include)
    if code:
        raise SystemExit(code)


@main.command()
@click.argument("spec_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("collection", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-o", "--output", required=True, type=click.Path(dir_okay=False, path_type=Path), help="Archive file to write.")
@click.pass_obj
def pack(settings: Settings, spec_path: Path, collection: Path, output: Path):
    """Package a document and its collection into one archive."""
    with Workspace(settings, store=_read_collection(collection)) as workspace:
        with _reported_errors():
            workspace.load_spec(spec_path.read_bytes(), name=spec_path.name)
            data = workspace.export_archive()
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(data)
    click.echo(f"Archive saved to {output}")


@main.command()
@click.argument("archive", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-d", "--directory", required=True, type=click.Path(file_okay=False, path_type=Path), help="Directory to unpack into.")
def unpack(archive: Path, directory: Path):
    """Validate an archive and write its document and collection to a directory."""
    with _reported_errors():
        contents = read_archive(archive.read_bytes())

    directory.mkdir(parents=True, exist_ok=True)
    if contents.spec_source is not None:
        spec_file = directory / (contents.spec_name or "openapi.yaml")
        spec_file.write_bytes(contents.spec_source)
        click.echo(f"  Created {spec_file}")
    collection_file = directory / "collection.json"
    _write_collection(collection_file, contents.store)
    click.echo(f"  Created {collection_file}")
