"""terzi CLI - build, send, save and replay HTTP requests from the terminal."""

import json
import logging
import os
import sys
from pathlib import Path

import click

from terzi.errors import InvalidInput, NotFound, TerziError, TransportError

TOOL_HELP = """\
terzi — CLI API client with saved requests, environments and history.

\b
QUICK REQUESTS
──────────────
  terzi https://api.example.com/users
  terzi -X POST -j '{"name":"John"}' https://api.example.com/users
  terzi -H 'Accept: text/plain' -A bearer:TOKEN https://api.example.com/me
  terzi --save list-users https://api.example.com/users

  The request subcommand ("send") is implied when the first argument is
  not a command name.

\b
AUTH (-A/--auth)
────────────────
  bearer:<token>              Authorization: Bearer <token>
  basic:<user>:<pass>         Authorization: Basic <base64>
  api-key:<header>:<value>    <header>: <value>
  api-key:<value>             X-API-Key: <value>
  <token>                     Shorthand for bearer:<token>

\b
SAVED REQUESTS AND VARIABLES
────────────────────────────
  Saved URLs, header values and bodies may contain {{name}} placeholders.
  "terzi run" fills them from a stored environment, then from -v flags
  (-v wins on collisions):

  terzi env set staging host=staging.example.com
  terzi --save get-user 'https://{{host}}/users/{{id}}'
  terzi run get-user --env staging -v id=42

\b
FILES
─────
  Data:    <config dir>/terzi/data.json (backups in backups/)
  Config:  <config dir>/terzi/config.toml
"""

GROUP_FLAGS = {"--debug", "--help", "--version"}
GROUP_OPTIONS = {"--data-dir", "--config"}

logger = logging.getLogger(__name__)


class TerziGroup(click.Group):
    """Routes bare URLs to the send command and maps TerziError to exit 1."""

    def parse_args(self, ctx, args):
        i = 0
        while i < len(args):
            arg = args[i]
            if arg in GROUP_OPTIONS:
                i += 2
            elif arg in GROUP_FLAGS or arg.split("=", 1)[0] in GROUP_OPTIONS:
                i += 1
            else:
                break
        if i < len(args) and args[i] not in self.commands:
            args = [*args[:i], "send", *args[i:]]
        return super().parse_args(ctx, args)

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except TerziError as e:
            click.echo(f"ERROR: {e}", err=True)
            sys.exit(1)


@click.group(cls=TerziGroup, invoke_without_command=True, help=TOOL_HELP)
@click.option(
    "--data-dir",
    envvar="TERZI_DATA_DIR",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory holding data.json and backups/.",
)
@click.option(
    "--config",
    "config_file",
    envvar="TERZI_CONFIG",
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to config.toml.",
)
@click.option("--debug", is_flag=True, default=False, help="Log debug output to stderr.")
@click.version_option(package_name="terzi", message="terzi %(version)s")
@click.pass_context
def main(ctx, data_dir, config_file, debug):
    from terzi.config import Config
    from terzi.storage import LoadResult, Storage

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    # $EDITOR is read here, at the boundary, and passed down explicitly.
    config = Config.load(config_file, editor=os.environ.get("EDITOR"))
    storage = Storage(data_dir, history_limit=config.general.max_history_entries)
    if storage.load_result is LoadResult.RECOVERED_WITH_DEFAULT:
        click.echo(
            f"WARNING: {storage.data_file} could not be parsed; starting with empty data.",
            err=True,
        )
    ctx.obj = {"config": config, "storage": storage}

    if ctx.invoked_subcommand is None:
        if config.ui.show_welcome_message:
            click.echo("Welcome to terzi!\n")
        click.echo(ctx.get_help())


# ── Shared helpers ───────────────────────────────────────────────────────


def _confirm(config, prompt: str, yes: bool) -> bool:
    if yes or not config.ui.confirm_dangerous_operations:
        return True
    return click.confirm(prompt, default=False)


def _parse_headers(header_tuples) -> dict[str, str]:
    """Parse -H 'Name: Value' tuples into a validated dict."""
    from terzi.validation import validate_header

    headers = {}
    for h in header_tuples:
        if ":" not in h:
            raise InvalidInput(f"Invalid header format: '{h}'. Use 'key:value'")
        k, v = h.split(":", 1)
        k, v = k.strip(), v.strip()
        if not k:
            raise InvalidInput(f"Invalid header format: '{h}'. Use 'key:value'")
        validate_header(k, v)
        headers[k] = v
    return headers


def _parse_pairs(pairs, label: str) -> dict[str, str]:
    """Parse KEY=VALUE tuples."""
    result = {}
    for pair in pairs:
        if "=" not in pair:
            raise InvalidInput(f"Invalid {label} format: '{pair}'. Use 'key=value'")
        k, v = pair.split("=", 1)
        result[k.strip()] = v
    return result


def _output_options(f):
    f = click.option("-S", "--silent", is_flag=True, default=False, help="Print nothing on success.")(f)
    f = click.option(
        "-i",
        "--include-headers",
        is_flag=True,
        default=False,
        help="Include response headers.",
    )(f)
    f = click.option(
        "--pretty/--no-pretty",
        default=None,
        help="Pretty-print JSON bodies. Default: output.pretty_print.",
    )(f)
    f = click.option(
        "-o",
        "--output",
        "output_format",
        type=click.Choice(["auto", "json", "yaml", "table", "raw"]),
        default=None,
        help="Body format. Default: output.default_format.",
    )(f)
    return f


def _execute_and_print(storage, config, request, output_format, pretty, include_headers, silent):
    from terzi import executor
    from terzi.output import format_response

    try:
        response = executor.execute_and_record(request, storage, config)
    except TransportError as e:
        click.echo(f"ERROR: Request failed: {e}", err=True)
        sys.exit(1)

    if silent:
        return response
    out = config.output
    click.echo(
        format_response(
            response,
            output_format=output_format or out.default_format,
            show_headers=include_headers or out.show_headers,
            pretty=out.pretty_print if pretty is None else pretty,
            show_timing=out.show_timing,
            show_size=out.show_size,
            max_body_length=out.max_body_length,
            color=config.should_use_colors(sys.stdout.isatty()),
        ),
    )
    return response


# ── Requests ─────────────────────────────────────────────────────────────


@main.command()
@click.argument("url")
@click.option("-X", "--method", default="GET", show_default=True, help="HTTP method.")
@click.option("-H", "--header", multiple=True, help="Header as 'Name: Value'. Repeatable.")
@click.option("-b", "--body", default=None, help="Raw request body.")
@click.option("-j", "--json", "json_body", default=None, help="JSON body; sets Content-Type.")
@click.option("-f", "--form", "form_data", multiple=True, help="Form field key=value. Repeatable.")
@click.option("-A", "--auth", default=None, help="Auth spec, e.g. bearer:TOKEN.")
@click.option("--token", "token_name", default=None, help="Use a stored auth token by name.")
@click.option(
    "-L",
    "--follow-redirects/--no-follow-redirects",
    default=None,
    help="Follow redirects. Default: general.follow_redirects.",
)
@click.option("-t", "--timeout", type=int, default=None, help="Timeout in seconds (1-3600).")
@click.option("--save", "save_name", default=None, metavar="NAME", help="Save the request.")
@click.option("--tag", "tags", multiple=True, help="Tag for the saved request. Repeatable.")
@click.option("--description", default=None, help="Description for the saved request.")
@_output_options
@click.pass_obj
def send(
    obj,
    url,
    method,
    header,
    body,
    json_body,
    form_data,
    auth,
    token_name,
    follow_redirects,
    timeout,
    save_name,
    tags,
    description,
    output_format,
    pretty,
    include_headers,
    silent,
):
    """Send a request to URL (default command)."""
    from terzi.request import RequestBuilder
    from terzi.validation import validate_timeout

    config, storage = obj["config"], obj["storage"]

    builder = RequestBuilder(url, method)
    builder.headers(_parse_headers(header))

    if token_name:
        token = config.get_token(token_name)
        if token is None:
            raise NotFound("token", token_name)
        builder.auth(token.to_auth_spec())
    if auth:
        builder.auth(auth)

    if sum(1 for b in (json_body, body, form_data) if b) > 1:
        raise InvalidInput("Only one body type allowed: --json, --body, or --form")
    if json_body is not None:
        builder.json_body(json_body)
    elif body is not None:
        builder.raw_body(body)
    elif form_data:
        builder.form_body(_parse_pairs(form_data, "form data"))

    if timeout is None:
        timeout = config.general.default_timeout
    builder.timeout(validate_timeout(timeout))
    if follow_redirects is None:
        follow_redirects = config.general.follow_redirects
    builder.follow_redirects(follow_redirects)
    builder.tags(tags)
    if description:
        builder.description(description)
    request = builder.build()

    if save_name:
        storage.save_request(save_name, request)
        click.echo(f"Request saved as '{save_name}'", err=True)

    _execute_and_print(storage, config, request, output_format, pretty, include_headers, silent)


@main.command()
@click.argument("name")
@click.option("--env", "environment", default=None, help="Stored environment to render with.")
@click.option("-v", "--var", multiple=True, help="Variable key=value. Overrides --env. Repeatable.")
@_output_options
@click.pass_obj
def run(obj, name, environment, var, output_format, pretty, include_headers, silent):
    """Render a saved request's {{placeholders}} and send it."""
    from terzi.template import RequestTemplate

    config, storage = obj["config"], obj["storage"]
    saved = storage.require_request(name)

    template = RequestTemplate(name=name, base_request=saved)
    if environment:
        variables = storage.get_environment(environment)
        if variables is None:
            raise NotFound("environment", environment)
        template.add_environment(environment, variables)

    request = template.render(environment, _parse_pairs(var, "variable"))
    _execute_and_print(storage, config, request, output_format, pretty, include_headers, silent)


@main.command()
@click.pass_obj
def interactive(obj):
    """Build and send requests with guided prompts."""
    from terzi.interactive import InteractiveMode

    InteractiveMode(obj["storage"], obj["config"]).run()


@main.command("list")
@click.option("--filter", "filter_text", default=None, help="Substring filter on name/URL/method/tags.")
@click.pass_obj
def list_cmd(obj, filter_text):
    """List saved requests, newest first."""
    from terzi.output import format_request_list

    click.echo(format_request_list(obj["storage"].list_requests(filter_text)))


@main.command()
@click.argument("query")
@click.pass_obj
def search(obj, query):
    """Search saved requests, best match first."""
    from terzi.output import format_request_list

    results = obj["storage"].search_requests(query)
    if not results:
        click.echo(f"No saved requests match '{query}'.")
        return
    click.echo(format_request_list(results))


@main.command()
@click.argument("name")
@click.pass_obj
def show(obj, name):
    """Show a saved request with secrets masked."""
    from terzi.output import format_request_details

    click.echo(format_request_details(obj["storage"].require_request(name)))


@main.command()
@click.argument("name")
@click.option("-y", "--yes", is_flag=True, default=False, help="Do not ask for confirmation.")
@click.pass_obj
def delete(obj, name, yes):
    """Delete a saved request."""
    storage = obj["storage"]
    storage.require_request(name)
    if not _confirm(obj["config"], f"Are you sure you want to delete request '{name}'?", yes):
        click.echo("Delete operation cancelled")
        return
    storage.delete_request(name)
    click.echo(f"Request '{name}' deleted")


@main.command()
@click.argument("name")
@click.pass_obj
def edit(obj, name):
    """Edit a saved request interactively."""
    from terzi.interactive import InteractiveMode

    request = obj["storage"].require_request(name)
    InteractiveMode(obj["storage"], obj["config"]).edit_request(request)


# ── History ──────────────────────────────────────────────────────────────


@main.command()
@click.option("-l", "--limit", type=int, default=10, show_default=True, help="Entries to show.")
@click.option("--stats", is_flag=True, default=False, help="Show aggregate statistics.")
@click.option("--clear", is_flag=True, default=False, help="Delete all history.")
@click.option("-y", "--yes", is_flag=True, default=False, help="Do not ask for confirmation.")
@click.pass_obj
def history(obj, limit, stats, clear, yes):
    """Show request history, newest first."""
    from terzi.output import format_history, format_stats

    storage = obj["storage"]
    if clear:
        if _confirm(obj["config"], "Clear all request history?", yes):
            storage.clear_history()
            click.echo("History cleared")
        return
    if stats:
        click.echo(format_stats(storage.get_history_stats()))
        return
    click.echo(format_history(storage.get_history(limit)))


# ── Config ───────────────────────────────────────────────────────────────


@main.group("config")
def config_group():
    """Get, set, list or reset configuration values."""


@config_group.command("get")
@click.argument("key")
@click.pass_obj
def config_get(obj, key):
    value = obj["config"].get_value(key)
    click.echo(f"{key} = {value if value is not None else '(unset)'}")


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_obj
def config_set(obj, key, value):
    config = obj["config"]
    config.update_value(key, value)
    config.save()
    click.echo(f"Set {key} = {config.get_value(key)}")


@config_group.command("list")
@click.pass_obj
def config_list(obj):
    config = obj["config"]
    for key in config.list_all_keys():
        value = config.get_value(key)
        click.echo(f"{key} = {value if value is not None else '(unset)'}")


@config_group.command("reset")
@click.option("-y", "--yes", is_flag=True, default=False, help="Do not ask for confirmation.")
@click.pass_obj
def config_reset(obj, yes):
    config = obj["config"]
    if not _confirm(config, "Are you sure you want to reset all configuration to defaults?", yes):
        click.echo("Reset operation cancelled")
        return
    config.reset_to_defaults(editor=os.environ.get("EDITOR"))
    config.save()
    click.echo("Configuration reset to defaults")


# ── Stored auth tokens ───────────────────────────────────────────────────


@main.group("token")
def token_group():
    """Store opaque auth tokens for use with --token."""


@token_group.command("add")
@click.argument("name")
@click.argument("value")
@click.option(
    "--type",
    "token_type",
    type=click.Choice(["bearer", "basic", "api-key"]),
    default="bearer",
    show_default=True,
)
@click.pass_obj
def token_add(obj, name, value, token_type):
    from terzi.config import StoredToken

    config = obj["config"]
    config.save_token(name, StoredToken(token_type=token_type, value=value))
    config.save()
    click.echo(f"Token '{name}' stored")


@token_group.command("list")
@click.pass_obj
def token_list(obj):
    config = obj["config"]
    names = config.list_tokens()
    if not names:
        click.echo("No stored tokens.")
        return
    for name in names:
        click.echo(f"  {name} ({config.get_token(name).token_type})")


@token_group.command("remove")
@click.argument("name")
@click.pass_obj
def token_remove(obj, name):
    config = obj["config"]
    if not config.delete_token(name):
        raise NotFound("token", name)
    config.save()
    click.echo(f"Token '{name}' removed")


# ── Environments ─────────────────────────────────────────────────────────


@main.group("env")
def env_group():
    """Manage variable environments used by 'terzi run'."""


@env_group.command("list")
@click.pass_obj
def env_list(obj):
    names = obj["storage"].list_environments()
    if not names:
        click.echo("No environments defined.")
        return
    for name in names:
        click.echo(f"  {name}")


@env_group.command("show")
@click.argument("name")
@click.pass_obj
def env_show(obj, name):
    variables = obj["storage"].get_environment(name)
    if variables is None:
        raise NotFound("environment", name)
    for k, v in sorted(variables.items()):
        click.echo(f"  {k}={v}")


@env_group.command("set")
@click.argument("name")
@click.argument("pairs", nargs=-1, required=True)
@click.pass_obj
def env_set(obj, name, pairs):
    """Merge KEY=VALUE pairs into environment NAME."""
    storage = obj["storage"]
    variables = storage.get_environment(name) or {}
    variables.update(_parse_pairs(pairs, "variable"))
    storage.save_environment(name, variables)
    click.echo(f"Environment '{name}' saved ({len(variables)} variables)")


@env_group.command("import")
@click.argument("name")
@click.argument("dotenv_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def env_import(obj, name, dotenv_file):
    """Load a .env file into environment NAME, replacing it."""
    from dotenv import dotenv_values

    variables = {k: v for k, v in dotenv_values(str(dotenv_file)).items() if v is not None}
    obj["storage"].save_environment(name, variables)
    click.echo(f"Environment '{name}' imported from {dotenv_file} ({len(variables)} variables)")


@env_group.command("delete")
@click.argument("name")
@click.pass_obj
def env_delete(obj, name):
    if not obj["storage"].delete_environment(name):
        raise NotFound("environment", name)
    click.echo(f"Environment '{name}' deleted")


# ── Collections ──────────────────────────────────────────────────────────


@main.group("collection")
def collection_group():
    """Group saved requests into named collections."""


@collection_group.command("create")
@click.argument("name")
@click.option("--description", default=None)
@click.pass_obj
def collection_create(obj, name, description):
    obj["storage"].create_collection(name, description)
    click.echo(f"Collection '{name}' created")


@collection_group.command("add")
@click.argument("name")
@click.argument("request_name")
@click.pass_obj
def collection_add(obj, name, request_name):
    """Copy saved request REQUEST_NAME into collection NAME."""
    storage = obj["storage"]
    storage.add_request_to_collection(name, storage.require_request(request_name))
    click.echo(f"Added '{request_name}' to '{name}'")


@collection_group.command("remove")
@click.argument("name")
@click.argument("request_name")
@click.pass_obj
def collection_remove(obj, name, request_name):
    storage = obj["storage"]
    collection = storage.get_collection(name)
    if collection is None:
        raise NotFound("collection", name)
    member = collection.find_request(request_name)
    if member is None or not storage.remove_request_from_collection(name, member.id):
        raise NotFound("request", request_name)
    click.echo(f"Removed '{request_name}' from '{name}'")


@collection_group.command("list")
@click.pass_obj
def collection_list(obj):
    collections = obj["storage"].list_collections()
    if not collections:
        click.echo("No collections.")
        return
    for c in collections:
        desc = f" — {c.description}" if c.description else ""
        click.echo(f"  {c.name} ({len(c.requests)} requests){desc}")


@collection_group.command("show")
@click.argument("name")
@click.pass_obj
def collection_show(obj, name):
    from terzi.output import format_request_list

    collection = obj["storage"].get_collection(name)
    if collection is None:
        raise NotFound("collection", name)
    click.echo(format_request_list(collection.requests))


@collection_group.command("delete")
@click.argument("name")
@click.pass_obj
def collection_delete(obj, name):
    if not obj["storage"].delete_collection(name):
        raise NotFound("collection", name)
    click.echo(f"Collection '{name}' deleted")


# ── Export / import / backup ─────────────────────────────────────────────


@main.command("export")
@click.option("-o", "--output", "output_path", default=None, help="File to write. Default: stdout.")
@click.option(
    "-f",
    "--format",
    "fmt",
    type=click.Choice(["json", "yaml"]),
    default="json",
    show_default=True,
)
@click.option("--include-history", is_flag=True, default=False, help="Include call history.")
@click.pass_obj
def export_cmd(obj, output_path, fmt, include_history):
    """Export saved requests, collections, environments and settings."""
    import yaml

    data = obj["storage"].export_data(include_history)
    if fmt == "yaml":
        data = yaml.safe_dump(json.loads(data), sort_keys=False, allow_unicode=True)

    if output_path is None:
        click.echo(data)
        return
    path = Path(output_path)
    if path.suffix != f".{fmt}":
        path = path.with_name(f"{path.name}.{fmt}")
    path.write_text(data)
    click.echo(f"Exported to {path}")


@main.command("import")
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--merge", is_flag=True, default=False, help="Merge instead of replacing everything.")
@click.option("-y", "--yes", is_flag=True, default=False, help="Do not ask for confirmation.")
@click.pass_obj
def import_cmd(obj, input_path, merge, yes):
    """Import an export file (JSON or YAML)."""
    import yaml

    text = input_path.read_text()
    if input_path.suffix in (".yaml", ".yml"):
        try:
            text = json.dumps(yaml.safe_load(text), default=str)
        except yaml.YAMLError as e:
            raise InvalidInput(f"Invalid YAML in {input_path}: {e}") from e

    if not merge and not _confirm(obj["config"], "Replace all existing data with the import?", yes):
        click.echo("Import cancelled")
        return
    obj["storage"].import_data(text, merge=merge)
    click.echo(f"Imported {input_path} ({'merged' if merge else 'replaced'})")


@main.group("backup")
def backup_group():
    """Create, list and restore full snapshots of the data file."""


@backup_group.command("create")
@click.pass_obj
def backup_create(obj):
    path = obj["storage"].create_backup()
    click.echo(f"Backup written to {path}")


@backup_group.command("list")
@click.pass_obj
def backup_list(obj):
    backups = obj["storage"].list_backups()
    if not backups:
        click.echo("No backups found.")
        return
    for path in backups:
        click.echo(f"  {path}")


@backup_group.command("restore")
@click.argument("backup_path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("-y", "--yes", is_flag=True, default=False, help="Do not ask for confirmation.")
@click.pass_obj
def backup_restore(obj, backup_path, yes):
    if not _confirm(obj["config"], f"Replace all data with {backup_path}?", yes):
        click.echo("Restore cancelled")
        return
    obj["storage"].restore_backup(backup_path)
    click.echo(f"Restored {backup_path}")
