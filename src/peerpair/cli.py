"""CLI entry point for peerpair."""

import asyncio
from datetime import datetime, timezone
from pathlib import Path

import click

from peerpair import __version__
from peerpair.config import Config, load_config
from peerpair.dicewords import configure_dictionary, words_from_bytes
from peerpair.errors import PeerPairError
from peerpair.logging import setup_logging
from peerpair.protocols import Role
from peerpair.sas import compute_sas
from peerpair.token import (
    OfferRecord,
    decode_token,
    display_words,
    expiration_message,
)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file.",
)
@click.pass_context
def main(ctx: click.Context, config: Path | None) -> None:
    """peerpair - Pair two peers by exchanging tokens and comparing a code."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config)
    ctx.obj["logger"] = setup_logging(ctx.obj["config"])
    configure_dictionary(ctx.obj["config"].dictionary_source)


@main.command()
def version() -> None:
    """Show version."""
    click.echo(f"peerpair version {__version__}")


@main.command()
@click.argument("fingerprint_a")
@click.argument("fingerprint_b")
def sas(fingerprint_a: str, fingerprint_b: str) -> None:
    """Compute the verification code for two fingerprints."""
    try:
        result = asyncio.run(compute_sas(fingerprint_a, fingerprint_b))
    except PeerPairError as e:
        raise click.ClickException(str(e))

    click.echo(f"Digits: {result.digits}")
    click.echo(f"Words:  {' '.join(result.words)}")


@main.command()
@click.argument("hex_data")
@click.option("--count", "-n", default=8, show_default=True, help="Number of words.")
def words(hex_data: str, count: int) -> None:
    """Render hex-encoded bytes as display words."""
    try:
        data = bytes.fromhex(hex_data)
    except ValueError:
        raise click.BadParameter("must be hex-encoded bytes", param_hint="HEX_DATA")

    try:
        result = asyncio.run(words_from_bytes(data, count))
    except PeerPairError as e:
        raise click.ClickException(str(e))
    click.echo(" ".join(result))


@main.command()
@click.argument("token")
def inspect(token: str) -> None:
    """Decode a token and show its contents."""
    try:
        record = decode_token(token)
        shown = asyncio.run(display_words(token))
    except PeerPairError as e:
        raise click.ClickException(str(e))

    created = datetime.fromtimestamp(record.created_at_ms / 1000, tz=timezone.utc)
    click.echo(f"Role:        {record.role.value}")
    click.echo(f"Version:     {record.version}")
    click.echo(f"Created:     {created.isoformat(timespec='seconds')}")
    click.echo(f"Fingerprint: {record.fingerprint}")
    if isinstance(record, OfferRecord):
        click.echo(f"TTL:         {record.policy.ttl_seconds}s")
        click.echo(f"Read-only:   {'yes' if record.policy.peer_read_only else 'no'}")
        expired = expiration_message(record)
        click.echo(f"Status:      {expired or 'valid'}")
    else:
        click.echo(f"Acknowledges: {record.acknowledged_offer_digest[:16]}...")
    click.echo(f"Words:       {' '.join(shown)}")


@main.command()
@click.pass_context
def offer(ctx: click.Context) -> None:
    """Start a session as the initiator (writer)."""
    config = ctx.obj["config"]
    try:
        asyncio.run(_run_initiator(config))
    except KeyboardInterrupt:
        click.echo("\nSession ended.")


@main.command()
@click.pass_context
def answer(ctx: click.Context) -> None:
    """Join a session as the responder (reader)."""
    config = ctx.obj["config"]
    try:
        asyncio.run(_run_responder(config))
    except KeyboardInterrupt:
        click.echo("\nSession ended.")


def _create_manager(config: Config, role: Role):
    from peerpair.pairing import PairingManager
    from peerpair.peer import AiortcChannelProvider

    provider = AiortcChannelProvider(stun_servers=config.stun_servers)
    return PairingManager(role, provider, config.session)


async def _verify_and_connect(manager, config: Config) -> None:
    """Show the SAS, ask the operator to confirm, wait for the data phase."""
    from peerpair.pairing import SessionState

    result = manager.context.sas
    click.echo("")
    click.echo("Compare this code with your peer over a trusted channel:")
    click.echo(f"  {result.display()}")
    matches = await asyncio.to_thread(
        click.confirm, "Does your peer see exactly the same code?"
    )
    if not matches:
        raise click.ClickException("Verification code mismatch, aborting")

    manager.confirm_sas()
    click.echo("Waiting for connection...")
    try:
        state = await manager.wait_for_state(
            SessionState.TEXTAREA,
            SessionState.ERROR,
            timeout=config.session.connect_timeout,
        )
    except asyncio.TimeoutError:
        raise click.ClickException("Timed out waiting for connection")
    if state == SessionState.ERROR:
        raise click.ClickException(manager.context.error_message or "Connection failed")
    click.echo("Connected.")


async def _run_initiator(config: Config) -> None:
    manager = _create_manager(config, Role.INITIATOR)
    try:
        wire = await manager.generate_offer()
        if wire is None:
            raise click.ClickException(manager.context.error_message or "Failed to generate offer")

        click.echo("Invite token (send this to your peer):")
        click.echo(wire)
        click.echo(f"Display words: {' '.join(await display_words(wire))}")

        answer_wire = await asyncio.to_thread(click.prompt, "Paste the answer token")
        if not await manager.submit_peer_answer(answer_wire):
            raise click.ClickException(manager.context.error_message or "Failed to accept answer")

        await _verify_and_connect(manager, config)

        click.echo("Type lines to share. An empty line ends the session.")
        lines: list[str] = []
        while True:
            line = await asyncio.to_thread(
                click.prompt, ">", default="", show_default=False
            )
            if not line:
                break
            lines.append(line)
            manager.edit_text("\n".join(lines))

        # Let the last debounced update go out
        await asyncio.sleep(config.session.text_debounce_ms / 1000 * 2)
    finally:
        await manager.close()


async def _run_responder(config: Config) -> None:
    from peerpair.pairing import SessionState

    manager = _create_manager(config, Role.RESPONDER)
    try:
        offer_wire = await asyncio.to_thread(click.prompt, "Paste the invite token")
        answer_wire = await manager.submit_peer_offer(offer_wire)
        if answer_wire is None:
            raise click.ClickException(manager.context.error_message or "Failed to create answer")

        click.echo("Answer token (send this back to your peer):")
        click.echo(answer_wire)
        click.echo(f"Display words: {' '.join(await display_words(answer_wire))}")

        await _verify_and_connect(manager, config)

        shown = {"text": manager.context.text}

        def print_updates(state, ctx) -> None:
            if ctx.text != shown["text"]:
                shown["text"] = ctx.text
                click.echo("--- shared text ---")
                click.echo(ctx.text)

        manager.machine.subscribe(print_updates)
        await manager.wait_for_state(SessionState.ERROR)
        click.echo(manager.context.error_message or "Session ended")
    finally:
        await manager.close()
