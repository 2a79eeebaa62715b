#!/usr/bin/env python3
"""
Model Enrichment CLI.

Command-line interface for enrichment runs:
- start: Research and merge a set of catalog models (runs in the foreground)
- stop / stop-all: Request a cooperative stop
- status: Show one execution and its log
- stats: Aggregate over recent executions
- list-eligible: Models ranked by enrichment priority
- test-single: Research and validate one model without writing

Usage:
    model-enrichment start --model-id openai-gpt-4o --model-id anthropic-claude-3-5-sonnet
    model-enrichment start --provider-id openai --test-mode --batch-size 3
    model-enrichment status enrichment_1718000000000_ab12cd34 --logs
    ENRICHMENT_STORAGE=memory USE_MOCK_LLM=true model-enrichment list-eligible
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Optional

import click

from model_enrichment import config as settings
from model_enrichment.enrichment.models import EnrichmentConfig, ModelSelectionPolicy, QualityTier
from model_enrichment.errors import EnrichmentError
from model_enrichment.jobs.models import Execution, LogLevel
from model_enrichment.jobs.scheduler import BatchScheduler
from model_enrichment.jobs.selection import list_eligible_entities
from model_enrichment.jobs.stats import get_workflow_stats
from model_enrichment.storage import get_stores

_LEVEL_COLORS = {LogLevel.INFO: None, LogLevel.WARN: "yellow", LogLevel.ERROR: "red"}


def _scheduler(ctx: click.Context) -> BatchScheduler:
    if ctx.obj.get("scheduler") is None:
        model_store, execution_store = get_stores()
        ctx.obj["scheduler"] = BatchScheduler(model_store, execution_store)
    return ctx.obj["scheduler"]


def _fail(e: EnrichmentError) -> None:
    click.echo(click.style(f"✗ {e.code}: {e.message}", fg="red"), err=True)
    sys.exit(1)


def config_options(func):
    """Options shared by every command that builds an EnrichmentConfig."""
    options = [
        click.option("--provider", default="generative-primary",
                     help="AI provider (generative-primary | generative-secondary)"),
        click.option("--model", "ai_model", default="", help="Research model (default per provider)"),
        click.option("--credentials-ref", default="",
                     help="Env var holding the API key (default GEMINI_API_KEY / PERPLEXITY_API_KEY)"),
        click.option("--quality-tier", default=QualityTier.ENHANCED.value,
                     type=click.Choice([q.value for q in QualityTier])),
        click.option("--policy", default=ModelSelectionPolicy.FALLBACK.value,
                     type=click.Choice([p.value for p in ModelSelectionPolicy]),
                     help="Model selection policy"),
        click.option("--include-validation", is_flag=True, help="Add the validation pass to cost estimates"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _build_config(provider, ai_model, credentials_ref, quality_tier, policy, include_validation, **extra):
    return EnrichmentConfig.from_dict({
        "provider": provider,
        "model": ai_model,
        "credentials_ref": credentials_ref,
        "quality_tier": quality_tier,
        "model_selection_policy": policy,
        "include_validation": include_validation,
        **extra,
    })


def _print_execution(execution: Execution, show_logs: bool = False) -> None:
    color = {"completed": "green", "failed": "red", "stopped": "yellow"}.get(execution.status.value)
    click.echo(click.style(f"Execution {execution.id}: {execution.status.value}", fg=color, bold=True))
    click.echo(f"  Models:     {execution.processed_entities}/{execution.total_entities} processed")
    click.echo(f"  Enriched:   {execution.succeeded_entities}")
    click.echo(f"  Rejected:   {execution.rejected_entities}")
    click.echo(f"  Failed:     {execution.failed_entities}")
    click.echo(f"  Cost:       ${execution.accumulated_cost:.4f} (estimated ${execution.estimated_cost:.4f})")
    click.echo(f"  Test mode:  {execution.config.test_mode}")
    if execution.error:
        click.echo(click.style(f"  Error:      {execution.error.get('message')}", fg="red"))
    if show_logs:
        click.echo("\nLog:")
        for entry in execution.logs:
            click.echo(click.style(
                f"  {entry.timestamp} [{entry.level.value}] {entry.message}",
                fg=_LEVEL_COLORS[entry.level],
            ))


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """Model Enrichment CLI - research and merge AI model metadata."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    ctx.ensure_object(dict)


# =============================================================================
# START
# =============================================================================

@cli.command("start")
@config_options
@click.option("--model-id", "-m", "model_ids", multiple=True, help="Model to enrich (repeatable; default: all eligible)")
@click.option("--provider-id", help="Only consider models from this provider (eligible selection)")
@click.option("--batch-size", default=5, type=int, help="Models per batch")
@click.option("--max-cost-per-batch", default=1.0, type=float, help="Cost ceiling in USD")
@click.option("--test-mode", is_flag=True, help="Research and validate without saving")
@click.option("--logs", "show_logs", is_flag=True, help="Print the execution log when done")
@click.pass_context
def start(ctx, model_ids, provider_id, batch_size, max_cost_per_batch, test_mode, show_logs, **config_kwargs):
    """
    Run an enrichment in the foreground and print the result.

    Examples:
        model-enrichment start -m openai-gpt-4o --test-mode
        model-enrichment start --provider-id anthropic --batch-size 2
    """
    try:
        config = _build_config(
            batch_size=batch_size,
            max_cost_per_batch=max_cost_per_batch,
            test_mode=test_mode,
            provider_id=provider_id,
            **config_kwargs,
        )
        execution = _scheduler(ctx).start(config, list(model_ids) or None, wait=True)
    except EnrichmentError as e:
        _fail(e)
        return
    _print_execution(execution, show_logs)
    if not execution.succeeded:
        sys.exit(1)


@cli.command("test-single")
@config_options
@click.argument("model_id")
@click.pass_context
def test_single(ctx, model_id, **config_kwargs):
    """Research and validate one model; nothing is written."""
    try:
        result = _scheduler(ctx).test_single(model_id, _build_config(**config_kwargs))
    except EnrichmentError as e:
        _fail(e)
        return

    if result.accepted:
        click.echo(click.style(f"✓ {model_id}: accepted ({result.model_used}, ${result.cost:.4f})", fg="green"))
    else:
        click.echo(click.style(f"✗ {model_id}: rejected", fg="red"))
    click.echo(json.dumps(result.to_dict(), indent=2, default=str))


# =============================================================================
# STOP
# =============================================================================

@cli.command("stop")
@click.argument("execution_id")
@click.pass_context
def stop(ctx, execution_id):
    """Request a stop; the run halts at its next checkpoint."""
    try:
        execution = _scheduler(ctx).stop(execution_id)
    except EnrichmentError as e:
        _fail(e)
        return
    if execution.is_terminal:
        click.echo(f"Execution {execution_id} already {execution.status.value}")
    else:
        click.echo(click.style(f"✓ Stop requested for {execution_id}", fg="green"))


@cli.command("stop-all")
@click.pass_context
def stop_all(ctx):
    """Request a stop on every queued or running execution."""
    try:
        stopped = _scheduler(ctx).stop_all()
    except EnrichmentError as e:
        _fail(e)
        return
    click.echo(click.style(f"✓ Stop requested for {len(stopped)} executions", fg="green"))
    for execution_id in stopped:
        click.echo(f"  {execution_id}")


# =============================================================================
# QUERIES
# =============================================================================

@cli.command("status")
@click.argument("execution_id")
@click.option("--logs", "show_logs", is_flag=True, help="Print the execution log")
@click.pass_context
def status(ctx, execution_id, show_logs):
    """Show one execution."""
    try:
        execution = _scheduler(ctx).get_execution(execution_id)
    except EnrichmentError as e:
        _fail(e)
        return
    _print_execution(execution, show_logs)


@cli.command("stats")
@click.pass_context
def stats(ctx):
    """Aggregate statistics over recent executions."""
    try:
        summary = get_workflow_stats(_scheduler(ctx).execution_store)
    except EnrichmentError as e:
        _fail(e)
        return
    click.echo(json.dumps(summary, indent=2, default=str))


@cli.command("list-eligible")
@click.option("--provider-id", help="Only models from this provider")
@click.option("--limit", default=25, type=int, help="Rows to print")
@click.pass_context
def list_eligible(ctx, provider_id: Optional[str], limit: int):
    """List models ranked by enrichment priority."""
    scheduler = _scheduler(ctx)
    try:
        models = list_eligible_entities(scheduler.model_store, scheduler.execution_store, provider_id)
    except EnrichmentError as e:
        _fail(e)
        return

    click.echo(f"{len(models)} models")
    for model in models[:limit]:
        flag = " (processing)" if model["isBeingProcessed"] else ""
        click.echo(
            f"  [{model['priority']:<6}] {model['id']:<40} "
            f"{model['dataQuality']:<9} {model['enrichmentStatus']}{flag}"
        )


if __name__ == "__main__":
    cli()
