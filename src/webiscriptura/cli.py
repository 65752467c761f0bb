"""Typer CLI for running and exercising the WebiScriptura chat proxy."""

from __future__ import annotations

import json
from dataclasses import asdict
from typing import List, Optional

import httpx
import typer

from .chat_proxy.config_loader import (
    list_env_overrides,
    load_proxy_config,
    update_config_file,
)
from .chat_proxy.providers import resolve_provider
from .logging_utils import configure_logging

app = typer.Typer(help="WebiScriptura chat proxy utilities")
config_app = typer.Typer(help="Inspect or edit the proxy configuration file")
app.add_typer(config_app, name="config")


@app.command("serve")
def cmd_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
    log_level: str = typer.Option("info", "--log-level", help="Root log level"),
):  # pragma: no cover - starts a server
    """Run the chat proxy under uvicorn."""
    import uvicorn

    cfg = load_proxy_config()
    log_path = configure_logging("chat_proxy", level=log_level)
    typer.echo(f"Logging to {log_path}")
    uvicorn.run(
        "webiscriptura.chat_proxy.app:app",
        host=host or cfg.host,
        port=port or cfg.port,
        log_level=log_level.lower(),
    )


@app.command("ask")
def cmd_ask(
    message: str,
    url: Optional[str] = typer.Option(
        None, "--url", help="Proxy endpoint (defaults to configured host/port)"
    ),
    timeout: float = typer.Option(120.0, "--timeout", help="Seconds to wait"),
):
    """Send one user message to a running proxy and stream the reply."""
    if url is None:
        cfg = load_proxy_config()
        url = f"http://{cfg.host}:{cfg.port}/api/chat-completion"
    body = {"messages": [{"role": "user", "content": message}]}
    try:
        with httpx.stream("POST", url, json=body, timeout=timeout) as resp:
            if resp.status_code != 200:
                typer.echo(f"Proxy returned {resp.status_code}", err=True)
                raise typer.Exit(1)
            for chunk in resp.iter_text():
                typer.echo(chunk, nl=False)
    except httpx.HTTPError as exc:
        typer.echo(f"Request failed: {exc}", err=True)
        raise typer.Exit(1)
    typer.echo("")


@app.command("provider")
def cmd_provider():
    """Show which upstream the current environment selects (keys hidden)."""
    cfg = load_proxy_config()
    provider = resolve_provider(
        default_model=cfg.default_model, azure_api_version=cfg.azure_api_version
    )
    typer.echo(
        json.dumps(
            {
                "kind": provider.kind,
                "endpoint": provider.endpoint_url,
                "model": provider.model,
                "api_key_set": bool(provider.api_key),
            },
            indent=2,
        )
    )


@config_app.command("show")
def cmd_config_show():
    """Print the effective configuration and active env overrides."""
    cfg = load_proxy_config()
    typer.echo(
        json.dumps(
            {"config": asdict(cfg), "env_overrides": list_env_overrides()},
            indent=2,
            ensure_ascii=False,
        )
    )


@config_app.command("set")
def cmd_config_set(
    assignments: List[str] = typer.Argument(..., help="KEY=VALUE pairs"),
):
    """Persist KEY=VALUE changes to the configuration file."""
    updates = {}
    for item in assignments:
        key, sep, value = item.partition("=")
        if not sep or not key:
            typer.echo(f"Expected KEY=VALUE, got '{item}'", err=True)
            raise typer.Exit(2)
        updates[key.strip()] = value
    try:
        cfg = update_config_file(updates)
    except KeyError as exc:
        typer.echo(str(exc.args[0]), err=True)
        raise typer.Exit(1)
    typer.echo(f"Updated {cfg.config_file_path}")


def main():  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
