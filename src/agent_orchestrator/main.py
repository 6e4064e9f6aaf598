"""CLI entrypoint for agent-orchestrator."""

from collections.abc import Callable
from typing import TypeVar

import rich_click as click
from redis.exceptions import RedisError

from agent_orchestrator import __version__
from agent_orchestrator.controllers import (
    ChatCommand,
    EmbedCommand,
    OrchestratorCliController,
    StateCheckCommand,
    TokensCommand,
)
from agent_orchestrator.errors import OrchestratorError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = OrchestratorCliController()

T = TypeVar("T")


@click.group()
@click.version_option(version=__version__, prog_name="agent-orchestrator")
def agent_orchestrator() -> None:
    """Run lifecycle tracking and LLM invocation CLI."""


@agent_orchestrator.command("chat")
@click.option("--message", required=True, help="User message for this turn.")
@click.option(
    "--system-prompt",
    default="You are a helpful assistant.",
    show_default=True,
    help="Composed system prompt sent before the message.",
)
@click.option("--workspace-id", default="default", show_default=True, help="Workspace label.")
@click.option("--model", default=None, help="Model override; defaults to OPENAI_MODEL.")
@click.option(
    "--redis-url",
    default=None,
    help="Redis URL for run state; defaults to AGENT_ORCHESTRATOR_REDIS_URL / REDIS_URL.",
)
def chat(
    message: str,
    system_prompt: str,
    workspace_id: str,
    model: str | None,
    redis_url: str | None,
) -> None:
    """Run one chat turn tracked as a run."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.chat(
                ChatCommand(
                    message=message,
                    system_prompt=system_prompt,
                    workspace_id=workspace_id,
                    model=model,
                    redis_url=redis_url,
                ),
            ),
        ),
    )


@agent_orchestrator.command("embed")
@click.argument("texts", nargs=-1, required=True)
@click.option("--model", default=None, help="Embedding model override.")
@click.option(
    "--stub",
    is_flag=True,
    default=False,
    help="Use deterministic stub embeddings regardless of EMBEDDINGS_PROVIDER.",
)
def embed(texts: tuple[str, ...], model: str | None, stub: bool) -> None:
    """Embed texts and print a short preview of each vector."""

    _emit_lines(
        _guarded(lambda: CONTROLLER.embed(EmbedCommand(texts=texts, model=model, stub=stub))),
    )


@agent_orchestrator.command("tokens")
@click.argument("text")
@click.option("--model", default=None, help="Model whose tokenizer to use.")
def tokens(text: str, model: str | None) -> None:
    """Count tokens and report whether the count is exact or estimated."""

    _emit_lines(_guarded(lambda: CONTROLLER.tokens(TokensCommand(text=text, model=model))))


@agent_orchestrator.group()
def state() -> None:
    """Run state backend commands."""


@state.command("check")
@click.option("--redis-url", default=None, help="Redis URL to health-check.")
@click.option(
    "--require-redis/--allow-fallback",
    default=None,
    help="Fail instead of falling back to in-memory state.",
)
@click.option(
    "--attempts",
    type=click.IntRange(min=1, max=20),
    default=None,
    help="Health-check attempts before giving up.",
)
def state_check(redis_url: str | None, require_redis: bool | None, attempts: int | None) -> None:
    """Bootstrap the state backend and report which one was selected."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.state_check(
                StateCheckCommand(
                    redis_url=redis_url,
                    require_redis=require_redis,
                    connect_attempts=attempts,
                ),
            ),
        ),
    )


def _guarded(action: Callable[[], T]) -> T:
    try:
        return action()
    except OrchestratorError as error:
        raise click.ClickException(f"[{error.code}] {error}") from error
    except (RedisError, OSError) as error:
        raise click.ClickException(f"[state_backend_unavailable] {error}") from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_orchestrator()
