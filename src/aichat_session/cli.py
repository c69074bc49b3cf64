"""CLI entry point for aichat-session."""

import asyncio
import logging
import os

import click
import httpx
import uvicorn

from .client import ChatClient
from .config import get_api_url, get_history_timeout, get_reconnect_delay, get_ws_url
from .export import transcript_to_markdown
from .listing import parse_listing
from .transports import HttpSnapshotFetcher, WebSocketTransport


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log protocol activity to stderr.")
def main(verbose: bool):
    """Drive an AI coding assistant backend over its WebSocket channel."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


@main.command()
@click.option("--port", default=8080, help="Port to serve on.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
@click.option("--ws-url", default=None, help="Backend WebSocket URL.")
@click.option("--api-url", default=None, help="Backend HTTP API URL.")
def serve(port: int, host: str, ws_url: str | None, api_url: str | None):
    """Start the HTTP interface."""
    if ws_url:
        os.environ["AICHAT_SESSION_WS_URL"] = ws_url
    if api_url:
        os.environ["AICHAT_SESSION_API_URL"] = api_url
    click.echo(f"Starting aichat-session on http://{host}:{port}")
    uvicorn.run("aichat_session.server:app", host=host, port=port, reload=False)


@main.command()
@click.option("--api-url", default=None, help="Backend HTTP API URL.")
def projects(api_url: str | None):
    """List projects and their sessions."""
    try:
        listing = asyncio.run(_fetch_projects(api_url or get_api_url()))
    except httpx.HTTPError as e:
        raise click.ClickException(f"Failed to fetch projects: {e}")

    for project in listing:
        click.echo(f"{project.display_name or project.name}  ({project.name})")
        for session in project.sessions:
            click.echo(f"  {session.id}  {session.message_count:>4}  {session.summary}")


@main.command()
@click.argument("project")
@click.argument("message")
@click.option("--session", "session_id", default=None, help="Resume this session.")
@click.option("--ws-url", default=None, help="Backend WebSocket URL.")
@click.option("--timeout", default=600.0, help="Seconds to wait for the reply.")
def chat(project: str, message: str, session_id: str | None, ws_url: str | None, timeout: float):
    """Send MESSAGE in PROJECT and print the transcript when the turn ends."""
    try:
        client = asyncio.run(_chat(project, message, session_id, ws_url or get_ws_url(), timeout))
    except asyncio.TimeoutError:
        raise click.ClickException(f"No reply within {timeout:.0f}s")
    click.echo(transcript_to_markdown(client.messages, client.identity.real_id or project))


async def _fetch_projects(api_url: str):
    fetcher = HttpSnapshotFetcher(api_url)
    try:
        return parse_listing(await fetcher.fetch_listing())
    finally:
        await fetcher.aclose()


async def _chat(project: str, message: str, session_id: str | None, ws_url: str, timeout: float) -> ChatClient:
    transport = WebSocketTransport(ws_url, reconnect_delay=get_reconnect_delay())
    client = ChatClient(transport, history_timeout=get_history_timeout())

    await transport.connect()
    try:
        await _wait_for(lambda: transport.is_connected, timeout)
        if session_id:
            client.select_session(project, session_id)
        else:
            client.select_project(project)

        async def consume():
            async for event in transport.events():
                client.handle_event(event)
                if event.get("type") in ("claude-complete", "session-aborted", "claude-error"):
                    return

        runner = asyncio.create_task(consume())
        if session_id:
            await _wait_for(lambda: not client.is_loading, timeout)
        if client.send_user_message(message) is None:
            runner.cancel()
            raise click.ClickException("Message was not sent")
        await asyncio.wait_for(runner, timeout)
    finally:
        await transport.close()
    return client


async def _wait_for(predicate, timeout: float, interval: float = 0.05) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(interval)

    await asyncio.wait_for(poll(), timeout)
