"""Command-line interface for filecast."""

from __future__ import annotations

import asyncio
import sys

import aiohttp
import click

from .config import Settings


async def make_request(method: str, url: str, **kwargs):
    """Make an async HTTP request and return the decoded JSON body."""
    async with aiohttp.ClientSession() as session:
        async with session.request(method, url, **kwargs) as response:
            payload = await response.json(content_type=None)
            if response.status >= 400:
                message = payload.get("error") if isinstance(payload, dict) else None
                raise click.ClickException(message or f"HTTP {response.status}")
            return payload


def _echo_status(stream: dict, indent: str = "") -> None:
    click.echo(f"{indent}Status: {stream['status']}")
    if stream.get("title"):
        click.echo(f"{indent}Title: {stream['title']}")
    click.echo(f"{indent}Upload: {stream['upload_speed']}")
    click.echo(f"{indent}Dropped frames: {stream['dropped_frames']}")
    if stream.get("status") == "live":
        click.echo(f"{indent}Duration: {stream['duration']}")
    if stream.get("error"):
        click.echo(f"{indent}Error: {stream['error']}")


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except click.ClickException:
        raise
    except Exception as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


@click.group()
def cli():
    """Publish media files to live ingest endpoints."""
    pass


@cli.command()
@click.option("--host", default="0.0.0.0", help="Interface to bind")
@click.option("--port", default=8000, type=int, help="Port to listen on")
@click.option("--engine-path", help="Path to the ffmpeg executable")
@click.option("--ingest-base", help="Ingest base URL, e.g. rtmp://a.rtmp.youtube.com/live2")
@click.option("--confirm-timeout", type=float, help="Seconds to wait before a start is confirmed")
def serve(host, port, engine_path, ingest_base, confirm_timeout):
    """Run the HTTP server."""
    from .server import main as run_server

    settings = Settings.from_env(
        engine_path=engine_path,
        ingest_base=ingest_base,
        confirm_timeout=confirm_timeout,
    )
    run_server(host=host, port=port, settings=settings)


@cli.command()
@click.option("--session-id", required=True, help="Identifier for the session")
@click.option("--credential", required=True, help="Ingest stream key")
@click.option("--input-path", required=True, type=click.Path(exists=True, dir_okay=False), help="Media file to publish")
@click.option("--quality", type=click.Choice(["low", "medium", "high"]), default="medium", show_default=True)
@click.option("--orientation", type=click.Choice(["landscape", "portrait"]), default="landscape", show_default=True)
@click.option("--loop/--no-loop", default=True, show_default=True, help="Loop the input forever")
@click.option("--title", help="Human-friendly label for the session")
@click.option("--server", default="http://localhost:8000", help="Server URL")
def start(session_id, credential, input_path, quality, orientation, loop, title, server):
    """Start publishing a file."""
    payload = {
        "credential": credential,
        "input_path": input_path,
        "quality": quality,
        "orientation": orientation,
        "loop": loop,
    }
    if title:
        payload["title"] = title

    async def _start():
        stream = await make_request("POST", f"{server}/streams/{session_id}/start", json=payload)
        click.echo(f"Session {session_id} started")
        _echo_status(stream)

    _run(_start())


@cli.command()
@click.option("--session-id", required=True, help="Session to stop")
@click.option("--server", default="http://localhost:8000", help="Server URL")
def stop(session_id, server):
    """Stop a running session."""
    async def _stop():
        await make_request("POST", f"{server}/streams/{session_id}/stop")
        click.echo(f"Session {session_id} stopped")

    _run(_stop())


@cli.command()
@click.option("--session-id", required=True, help="Session to check")
@click.option("--server", default="http://localhost:8000", help="Server URL")
def status(session_id, server):
    """Show the status of one session."""
    async def _status():
        stream = await make_request("GET", f"{server}/streams/{session_id}/status")
        click.echo(f"Session: {stream['session_id']}")
        _echo_status(stream)

    _run(_status())


@cli.command()
@click.option("--server", default="http://localhost:8000", help="Server URL")
def list_streams(server):
    """List known sessions."""
    async def _list():
        result = await make_request("GET", f"{server}/streams")
        streams = result.get("streams", [])
        if not streams:
            click.echo("No sessions")
            return

        click.echo(f"Found {len(streams)} session(s):")
        click.echo()
        for stream in streams:
            click.echo(f"Session: {stream['session_id']}")
            _echo_status(stream, indent="  ")
            click.echo()

    _run(_list())


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
