"""CLI for crewsim - run a simulated agent crew from the terminal."""

from __future__ import annotations

import asyncio
import json
import logging
import time

import click
from pydantic import ValidationError

from crewsim import __version__
from crewsim.clock import AsyncioScheduler, ManualClock, VirtualScheduler
from crewsim.policies import db_path_from_environment, get_policy, log_level_from_environment
from crewsim.roster import (
    AGENT_TEMPLATES,
    CREW_TEMPLATES,
    DEFAULT_CREW,
    build_agents,
    get_crew_template,
    load_agents,
)
from crewsim.schemas import ExecutionStep, PolicyId, StepType
from crewsim.session import CrewSession, Playback
from crewsim.store import NullStore, SQLiteMemoryStore


@click.group()
@click.version_option(version=__version__, prog_name="crewsim")
def main() -> None:
    """crewsim - Simulated multi-agent crew orchestration.

    Route messages to a crew of scripted agents and watch them think,
    delegate and review.
    """
    logging.basicConfig(
        level=log_level_from_environment(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@main.command()
@click.option("--port", default=8000, help="Port to run the broker on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
def serve(port: int, host: str, reload: bool) -> None:
    """Start the crewsim HTTP broker server."""
    import uvicorn

    click.echo(f"Starting crewsim broker on {host}:{port}")
    uvicorn.run(
        "crewsim.broker:app",
        host=host,
        port=port,
        reload=reload,
    )


async def _play(session: CrewSession, content: str, live: bool, on_step) -> Playback | None:
    loop = asyncio.get_running_loop()
    finished: asyncio.Future = loop.create_future()

    playback = session.send_message(
        content,
        on_step=on_step,
        on_complete=lambda p: finished.done() or finished.set_result(p),
    )
    if playback is None:
        return None

    if not live:
        session.scheduler.run_all()
    await finished
    await session.engine.drain()
    return playback


@main.command()
@click.argument("message")
@click.option(
    "--crew", "-c",
    type=click.Choice(sorted(CREW_TEMPLATES)),
    default=DEFAULT_CREW,
    help="Crew template to use",
)
@click.option(
    "--agents", "-a",
    "agents_file",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file with agent records (overrides --crew)",
)
@click.option(
    "--policy", "-p",
    type=click.Choice([p.value for p in PolicyId]),
    default=PolicyId.DEFAULT.value,
    help="Configuration policy",
)
@click.option("--live", is_flag=True, help="Play steps back in real time")
@click.option("--no-memory", is_flag=True, help="Do not load or save persisted memory")
@click.option("--raw", is_flag=True, help="Output raw JSON instead of formatted text")
def send(
    message: str,
    crew: str,
    agents_file: str | None,
    policy: str,
    live: bool,
    no_memory: bool,
    raw: bool,
) -> None:
    """Send a message to a crew and show how it was handled.

    \b
    Example:
        crewsim send "build a login page"
        crewsim send "compare these frameworks" --crew full-stack --live
    """
    try:
        agents = load_agents(agents_file) if agents_file else build_agents(crew)
    except (OSError, ValidationError) as e:
        raise click.ClickException(f"Could not load agents: {e}")

    crew_policy = get_policy(PolicyId(policy))

    try:
        session = CrewSession(
            agents,
            policy=crew_policy,
            scheduler=AsyncioScheduler() if live else VirtualScheduler(ManualClock(time.time())),
            store=NullStore() if no_memory else SQLiteMemoryStore.for_policy(crew_policy),
        )
    except ValueError as e:
        raise click.ClickException(str(e))

    def echo_step(step: ExecutionStep, index: int) -> None:
        if raw or step.type == StepType.COMPLETE:
            return
        marker = "  ~" if step.parallel else "  -"
        first_line = step.content.splitlines()[0] if step.content else ""
        click.echo(f"{marker} {step.agent_emoji} {step.agent_name} [{step.type.value}] {first_line}")

    if not raw:
        click.echo(f"\n{'=' * 60}")
        click.echo(f"Message: {message}")
        click.echo(f"Crew: {session.engine.crew.name} | Policy: {policy}")
        click.echo(f"{'=' * 60}\n")

    try:
        playback = asyncio.run(_play(session, message, live, echo_step))
    finally:
        session.close()

    if playback is None:
        raise click.ClickException("Crew is busy")

    if raw:
        output = {
            "decision": playback.decision.model_dump(mode="json"),
            "plan": playback.plan.model_dump(mode="json"),
            "result": playback.result.model_dump(mode="json") if playback.result else None,
        }
        click.echo(json.dumps(output, indent=2, ensure_ascii=False))
        return

    decision = playback.decision
    click.echo(f"\nRouted to {decision.agent_id} ({decision.confidence:.0%}): {decision.reason}")
    click.echo(f"\n{'─' * 60}")
    click.echo(playback.plan.final_response)
    click.echo(f"{'─' * 60}")

    result = playback.result
    if result and result.review:
        review = result.review
        click.echo(f"Review: {review.verdict.value} (score {review.score:.2f}) - {review.feedback}")
    click.echo()


@main.command()
def crews() -> None:
    """List built-in crew templates."""
    for template in CREW_TEMPLATES.values():
        star = "*" if template.recommended else " "
        click.echo(f"{star} {template.id:<14} {template.name:<14} [{template.complexity.value}] {template.tagline}")
        click.echo(f"    agents: {', '.join(template.agent_ids)}")


@main.command()
@click.option(
    "--crew", "-c",
    type=click.Choice(sorted(CREW_TEMPLATES)),
    default=None,
    help="Only show agents in this crew template",
)
def agents(crew: str | None) -> None:
    """List built-in agent templates."""
    template = get_crew_template(crew) if crew else None
    ids = template.agent_ids if template else tuple(AGENT_TEMPLATES)

    for agent_id in ids:
        agent = AGENT_TEMPLATES[agent_id]
        click.echo(f"{agent.emoji} {agent.id:<12} {agent.name:<14} {agent.description}")
        if agent.suggested_keywords:
            click.echo(f"    keywords: {', '.join(agent.suggested_keywords)}")


@main.command()
@click.confirmation_option(prompt="Are you sure you want to delete the persisted crew memory?")
def forget() -> None:
    """Delete persisted crew memory.

    \b
    Example:
        crewsim forget --yes
    """
    store = SQLiteMemoryStore.for_policy(get_policy(PolicyId.DEFAULT))
    store.clear()
    click.echo(f"Cleared crew memory in {db_path_from_environment()}")


if __name__ == "__main__":
    main()
