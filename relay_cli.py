"""
A terminal client for the relay service: streams turns, asks for tool
approvals inline, and keeps the conversation history between turns.
"""
import json
import uuid
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import httpx
import typer
import yaml
from prompt_toolkit import prompt as ptk_prompt
from prompt_toolkit.formatted_text import FormattedText
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.prompt import Prompt
from rich.spinner import Spinner
from rich.table import Table

# --- Configuration ---
API_BASE_URL = "http://127.0.0.1:8080/api/v1"
DONE_SENTINEL = "[DONE]"


# --- Rich Console Initialization ---
console = Console()
app = typer.Typer(
    name="relay-cli",
    help="A terminal client for the relay service.",
    add_completion=False,
)


# --- Stream decoding ---

def iter_frames(lines: Iterator[str]) -> Iterator[Dict[str, Any]]:
    """Decode `data: {...}` frames until the `[DONE]` sentinel."""
    for line in lines:
        if not line or not line.startswith("data:"):
            continue
        payload = line[len("data:"):].strip()
        if payload == DONE_SENTINEL:
            return
        try:
            yield json.loads(payload)
        except json.JSONDecodeError:
            console.print(f"[red]Skipping malformed frame: {payload[:80]}[/red]")


def load_tools_config(path: Optional[Path]) -> Optional[Dict[str, Any]]:
    if path is None:
        return None
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


# --- API Interaction Functions ---

def send_approval(client: httpx.Client, base_url: str, turn_id: str, call_id: str, approved: bool, remember: bool):
    try:
        response = client.post(
            f"{base_url}/turns/{turn_id}/approvals/{call_id}",
            json={"approved": approved, "remember": remember},
        )
        response.raise_for_status()
        if not response.json().get("resolved"):
            console.print("[yellow]The service had already settled this call.[/yellow]")
    except httpx.HTTPError as e:
        console.print(f"[bold red]Error sending approval:[/bold red] {e}")


def ask_approval(data: Dict[str, Any]) -> tuple[bool, bool]:
    """Returns (approved, remember)."""
    server = data.get("server_label")
    title = f"{server} / {data.get('name')}" if server else data.get("name")
    args = json.dumps(data.get("arguments"), indent=2)
    console.print(Panel(f"[bold]{title}[/bold]\n{args}", title="Approval required", border_style="magenta"))
    choice = Prompt.ask("Run this tool? (y)es / (n)o / (a)lways / ne(v)er", choices=["y", "n", "a", "v"], default="n")
    return choice in ("y", "a"), choice in ("a", "v")


def list_tools(base_url: str) -> list:
    try:
        response = httpx.get(f"{base_url}/tools")
        response.raise_for_status()
        return response.json().get("tools", [])
    except httpx.HTTPError as e:
        console.print(f"[bold red]Error:[/bold red] Could not connect to the service at {base_url}.")
        console.print("Please ensure the relay service is running: [bold]python -m relay_service.app[/bold]")
        console.print(f"Details: {e}")
        raise typer.Exit(1)


def run_turn(
    client: httpx.Client,
    base_url: str,
    messages: List[Dict[str, Any]],
    tools_config: Optional[Dict[str, Any]],
    model: Optional[str],
    debug: bool,
) -> Optional[List[Dict[str, Any]]]:
    """Stream one turn. Returns the updated history when the turn completes."""
    turn_id = f"turn_{uuid.uuid4().hex[:12]}"
    body: Dict[str, Any] = {"messages": messages, "turn_id": turn_id}
    if tools_config is not None:
        body["tools"] = tools_config
    if model:
        body["model"] = model

    text_started = False
    history = None
    with client.stream("POST", f"{base_url}/turns", json=body) as response:
        if response.status_code >= 400:
            response.read()
            console.print(Panel(str(response.json().get("detail")), title="Request rejected", border_style="bold red"))
            return None

        spinner_active = True
        with Live(Spinner("dots", text="[dim]Waiting for response...[/dim]"), console=console, refresh_per_second=10) as live:
            for frame in iter_frames(response.iter_lines()):
                if spinner_active:
                    live.stop()
                    spinner_active = False

                evt_type = frame.get("event")
                data = frame.get("data", {}) or {}
                if debug:
                    console.print(f"[dim]Received event: {frame}[/dim]")

                if evt_type == "content.delta":
                    if not text_started:
                        console.print("\n[bold green]Assistant:[/bold green]")
                        text_started = True
                    console.print(data.get("delta", ""), end="", style="green")

                elif evt_type == "tool_call.created":
                    if text_started:
                        console.print()
                    console.print(Panel(f"Calling tool: [bold yellow]{data.get('name')}[/bold yellow]", expand=False, border_style="yellow"))

                elif evt_type == "approval.required":
                    if data.get("decision", "pending") != "pending":
                        console.print(f"[dim]{data.get('name')}: {data['decision']} by a remembered choice[/dim]")
                        continue
                    approved, remember = ask_approval(data)
                    send_approval(client, base_url, turn_id, data["call_id"], approved, remember)

                elif evt_type == "tool_call.output":
                    output = data.get("output", data.get("approved"))
                    style = "red" if data.get("is_error") else "dim yellow"
                    console.print(Panel(f"{str(output)[:200]}", title="Tool Output", expand=False, border_style=style))

                elif evt_type == "turn.completed":
                    if text_started:
                        console.print()
                    history = data.get("history")

                elif evt_type == "turn.cancelled":
                    console.print("\n[yellow]Turn cancelled.[/yellow]")

                elif evt_type == "error":
                    if text_started:
                        console.print()
                    console.print(Panel(f"Error: {data.get('message')}", title="Error", border_style="bold red"))
    return history


@app.command()
def tools(url: str = typer.Option(API_BASE_URL, "--url", help="Base URL of the relay API.")):
    """List the client-local tools the service offers."""
    table = Table(title="Local tools", border_style="blue")
    table.add_column("Name", style="bold cyan")
    table.add_column("Approval")
    table.add_column("Description")
    for tool in list_tools(url):
        table.add_row(tool["name"], "required" if tool.get("require_approval") else "-", tool["schema"].get("description", ""))
    console.print(table)


@app.command()
def chat(
    url: str = typer.Option(API_BASE_URL, "--url", help="Base URL of the relay API."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Override the service's configured model."),
    tools_file: Optional[Path] = typer.Option(None, "--tools", "-t", help="YAML or JSON file with the tool configuration."),
    debug: bool = typer.Option(False, "--debug", help="Show every received event."),
):
    """Chat with the relay service."""
    console.print(Panel.fit(
        "[bold blue]Relay CLI[/bold blue]\n"
        "Type [bold cyan]\\exit[/bold cyan] to quit, [bold cyan]\\reset[/bold cyan] to start over.",
        style="bold blue"
    ))
    tools_config = load_tools_config(tools_file)
    history: List[Dict[str, Any]] = []

    with httpx.Client(timeout=httpx.Timeout(10.0, read=None)) as client:
        while True:
            try:
                user_prompt = ptk_prompt(FormattedText([('bold cyan', 'You '), ('', '(Alt+Enter for newline)\n')]), multiline=True)
                stripped_prompt = user_prompt.strip().lower()
                if stripped_prompt in ["\\exit", "\\quit"]:
                    console.print("Goodbye!")
                    break
                if stripped_prompt == "\\reset":
                    history = []
                    console.print("History cleared.")
                    continue

                messages = history + [{"role": "user", "content": user_prompt}]
                updated = run_turn(client, url, messages, tools_config, model, debug)
                if updated is not None:
                    history = updated
            except httpx.HTTPError as e:
                console.print(f"\n[bold red]Error:[/bold red] Could not get response from server. {e}")
                continue
            except (KeyboardInterrupt, EOFError):
                console.print("Goodbye!")
                break
            finally:
                console.rule()


if __name__ == "__main__":
    app()
