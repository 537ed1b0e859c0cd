"""terzi interactive - guided request building on a single prompt loop."""

import click

from terzi import executor
from terzi.errors import TerziError, TransportError
from terzi.output import format_history, format_request_details, format_response
from terzi.request import RequestBuilder, SavedRequest
from terzi.validation import VALID_METHODS, is_valid_header_name, is_valid_header_value

MAIN_MENU = {
    "1": "Create new request",
    "2": "Load saved request",
    "3": "Browse saved requests",
    "4": "Search history",
    "5": "Settings",
    "q": "Quit",
}

AUTH_TYPES = ("bearer", "basic", "api-key")
BODY_TYPES = ("json", "form", "raw", "file")


class InteractiveMode:
    """Menu-driven wizard over Storage and the executor.

    prompt/confirm/echo default to click's and can be swapped for tests.
    """

    def __init__(self, storage, config, prompt=click.prompt, confirm=click.confirm, echo=click.echo):
        self.storage = storage
        self.config = config
        self.prompt = prompt
        self.confirm = confirm
        self.echo = echo

    def run(self) -> None:
        if self.config.ui.show_welcome_message:
            self.echo("terzi interactive mode. Choose 'q' to quit.")
        while self.main_menu():
            pass
        self.echo("Goodbye!")

    def main_menu(self) -> bool:
        self.echo("")
        for key, label in MAIN_MENU.items():
            self.echo(f"  [{key}] {label}")
        choice = self.prompt(
            "What would you like to do?",
            type=click.Choice(list(MAIN_MENU)),
            show_choices=False,
        )
        if choice == "q":
            return False
        handlers = {
            "1": self.create_new_request,
            "2": self.load_saved_request,
            "3": self.browse_requests,
            "4": self.search_history,
            "5": self.settings_menu,
        }
        try:
            handlers[choice]()
        except TerziError as e:
            self.echo(f"ERROR: {e}")
        return True

    # ── Building ─────────────────────────────────────────────────────────

    def _prompt_url(self, default: str | None = None) -> str:
        while True:
            url = self.prompt("Enter the URL", default=default)
            try:
                RequestBuilder(url)
                return url
            except TerziError as e:
                self.echo(f"ERROR: {e}")

    def _prompt_method(self, default: str = "GET") -> str:
        return self.prompt(
            "Select HTTP method",
            type=click.Choice(VALID_METHODS, case_sensitive=False),
            default=default,
        ).upper()

    def create_new_request(self) -> None:
        url = self._prompt_url()
        builder = RequestBuilder(url, self._prompt_method())

        if self.confirm("Add custom headers?", default=False):
            self.add_headers(builder)
        if self.confirm("Add authentication?", default=False):
            self.add_authentication(builder)
        if self.confirm("Add request body?", default=False):
            self.add_body(builder)

        request = builder.build()
        self.echo(format_request_details(request))

        if self.confirm("Execute this request?", default=True):
            self.execute(request)
        if self.confirm("Save this request for future use?", default=False):
            self.save_request_interactive(request)

    def add_headers(self, builder: RequestBuilder) -> None:
        while True:
            name = self.prompt(
                "Header name (or press Enter to finish)", default="", show_default=False
            )
            if not name:
                return
            value = self.prompt(f"Value for '{name}'")
            if not is_valid_header_name(name) or not is_valid_header_value(value):
                self.echo(f"Skipping invalid header '{name}'")
                continue
            builder.header(name, value)

    def add_authentication(self, builder: RequestBuilder) -> None:
        auth_type = self.prompt("Select authentication type", type=click.Choice(AUTH_TYPES))
        if auth_type == "bearer":
            token = self.prompt("Enter bearer token", hide_input=True)
            builder.auth(f"bearer:{token}")
        elif auth_type == "basic":
            username = self.prompt("Username")
            password = self.prompt("Password", hide_input=True)
            builder.auth(f"basic:{username}:{password}")
        else:
            header = self.prompt("Header name", default="X-API-Key")
            value = self.prompt("API key value", hide_input=True)
            builder.auth(f"api-key:{header}:{value}")

    def add_body(self, builder: RequestBuilder) -> None:
        body_type = self.prompt("Select body type", type=click.Choice(BODY_TYPES))
        if body_type == "json":
            while True:
                text = self.prompt("JSON")
                try:
                    builder.json_body(text)
                    return
                except TerziError as e:
                    self.echo(f"ERROR: {e}")
        elif body_type == "form":
            form: dict[str, str] = {}
            while True:
                key = self.prompt(
                    "Form field name (or press Enter to finish)", default="", show_default=False
                )
                if not key:
                    break
                form[key] = self.prompt(f"Value for '{key}'")
            builder.form_body(form)
        elif body_type == "raw":
            builder.raw_body(self.prompt("Enter raw body content"))
        else:
            path = self.prompt("Enter file path", type=click.Path(exists=True, dir_okay=False))
            with open(path, encoding="utf-8") as f:
                builder.raw_body(f.read())

    def save_request_interactive(self, request: SavedRequest) -> None:
        name = self.prompt("Enter a name for this request")
        if self.storage.get_request(name) and not self.confirm(f"Overwrite '{name}'?", default=False):
            return
        self.storage.save_request(name, request)
        self.echo(f"Request saved as '{name}'")

    # ── Running ──────────────────────────────────────────────────────────

    def execute(self, request: SavedRequest) -> None:
        try:
            response = executor.execute_and_record(request, self.storage, self.config)
        except TransportError as e:
            self.echo(f"ERROR: Request failed: {e}")
            return
        out = self.config.output
        self.echo(
            format_response(
                response,
                output_format=out.default_format,
                show_headers=out.show_headers,
                pretty=out.pretty_print,
                show_timing=out.show_timing,
                show_size=out.show_size,
                max_body_length=out.max_body_length,
            ),
        )

    def _pick_request(self, prompt: str) -> SavedRequest | None:
        requests = self.storage.list_requests()
        if not requests:
            self.echo("No saved requests found.")
            return None
        for i, r in enumerate(requests, 1):
            self.echo(f"  [{i}] {r.name}  {r.method} {r.url}")
        index = self.prompt(prompt, type=click.IntRange(1, len(requests)))
        return requests[index - 1]

    def load_saved_request(self) -> None:
        request = self._pick_request("Select a request to load")
        if request is None:
            return
        self.echo(format_request_details(request))
        if self.confirm("Execute this request?", default=True):
            self.execute(request)

    def browse_requests(self) -> None:
        request = self._pick_request("Select a request")
        if request is None:
            return
        action = self.prompt(
            "What would you like to do?",
            type=click.Choice(["show", "run", "edit", "delete", "back"]),
            default="show",
        )
        if action == "show":
            self.echo(format_request_details(request))
        elif action == "run":
            self.execute(request)
        elif action == "edit":
            self.edit_request(request)
        elif action == "delete":
            if not self.config.ui.confirm_dangerous_operations or self.confirm(
                f"Delete request '{request.name}'?",
                default=False,
            ):
                self.storage.delete_request(request.name)
                self.echo(f"Request '{request.name}' deleted")

    def edit_request(self, request: SavedRequest) -> SavedRequest:
        """Edit url/method/body/headers in place, then persist under the same name."""
        while True:
            action = self.prompt(
                "What would you like to edit?",
                type=click.Choice(["url", "method", "body", "header", "done"]),
                default="done",
            )
            if action == "done":
                break
            if action == "url":
                request.url = self._prompt_url(default=request.url)
                request.touch()
            elif action == "method":
                request.method = self._prompt_method(default=request.method)
                request.touch()
            elif action == "body":
                body = self.prompt(
                    "Enter new body (or leave empty to remove)",
                    default="",
                    show_default=False,
                )
                request.set_body(body or None)
            else:
                name = self.prompt("Header name")
                value = self.prompt(f"Value for '{name}'")
                if is_valid_header_name(name) and is_valid_header_value(value):
                    request.add_header(name, value)
                else:
                    self.echo(f"Skipping invalid header '{name}'")
        saved = self.storage.save_request(request.name, request)
        self.echo(f"Request '{request.name}' updated")
        return saved

    def search_history(self) -> None:
        query = self.prompt("Search history (URL or method)", default="", show_default=False).lower()
        entries = [
            e
            for e in self.storage.get_history(self.storage.history_limit)
            if query in e.url.lower() or query in e.method.lower()
        ]
        self.echo(format_history(entries))

    def settings_menu(self) -> None:
        for key in self.config.list_all_keys():
            self.echo(f"  {key} = {self.config.get_value(key)}")
        key = self.prompt("Key to change (or press Enter to go back)", default="", show_default=False)
        if not key:
            return
        value = self.prompt(f"New value for {key}")
        self.config.update_value(key, value)
        self.config.save()
        self.echo(f"Set {key} = {value}")
