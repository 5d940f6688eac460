from __future__ import annotations

import logging

import typer

from .config import get_default_env_file, get_settings
from .db import init_db, session_factory
from .errors import FeedStreamError, NotFound
from .logging_setup import configure_logging
from .providers.http_fetcher import HttpFetcher
from .services.batch_coordinator import BatchCoordinator
from .services.subscription_service import SubscriptionService
from .services.sync_service import SyncService
from .views.table_renderer import render_search_hits, render_sources

logger = logging.getLogger(__name__)

app = typer.Typer(help="Feed ingestion and synchronization CLI", no_args_is_help=True)
sub_app = typer.Typer(help="Subscription management")
config_app = typer.Typer(help="Configuration")
app.add_typer(sub_app, name="sub")
app.add_typer(config_app, name="config")


class _Runtime:
    def __init__(self) -> None:
        settings = get_settings()
        configure_logging(settings.log_level)
        init_db(settings)

        self.settings = settings
        self.fetcher = HttpFetcher(
            user_agent=settings.user_agent,
            timeout_seconds=settings.http_timeout_seconds,
        )
        factory = session_factory(settings)
        self.sync_service = SyncService(
            fetcher=self.fetcher,
            session_factory=factory,
            timeout_seconds=settings.http_timeout_seconds,
            retention_cap=settings.retention_cap,
            link_aggregator_hosts=settings.link_aggregator_hosts,
        )
        self.batch = BatchCoordinator(
            sync_service=self.sync_service,
            session_factory=factory,
            max_workers=settings.max_concurrency,
            max_per_host=settings.max_per_host,
            circuit_fail_threshold=settings.circuit_fail_threshold,
            politeness_delay_ms=settings.politeness_delay_ms,
        )
        self.subscriptions = SubscriptionService(sync_service=self.sync_service, session_factory=factory)

    def owner(self, owner: str | None) -> str:
        return (owner or "").strip() or self.settings.default_owner

    def close(self) -> None:
        try:
            self.fetcher.close()
        except Exception:  # noqa: BLE001
            logger.debug("Closing fetcher failed", exc_info=True)


def _build_runtime() -> _Runtime:
    return _Runtime()


@sub_app.command("add")
def sub_add(
    url: str = typer.Option(..., "--url", help="Feed URL (RSS, Atom, RDF or JSON Feed)"),
    owner: str | None = typer.Option(None, "--owner"),
) -> None:
    """Subscribe to a feed and run its first sync."""

    runtime = _build_runtime()
    try:
        try:
            source, result = runtime.subscriptions.subscribe(runtime.owner(owner), url)
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
        except FeedStreamError as exc:
            typer.echo(f"Subscribed but the first sync failed: {exc}")
            raise typer.Exit(code=1) from exc
        typer.echo(
            f"Subscribed: id={source.id} title={source.title} kind={source.kind} new={result.new_articles}"
        )
    finally:
        runtime.close()


@sub_app.command("list")
def sub_list(owner: str | None = typer.Option(None, "--owner")) -> None:
    """List subscriptions with their sync health."""

    runtime = _build_runtime()
    try:
        sources = runtime.subscriptions.list_sources(runtime.owner(owner))
        typer.echo(render_sources(sources), nl=False)
    finally:
        runtime.close()


def _toggle(action: str, source_id: str, owner: str | None) -> None:
    runtime = _build_runtime()
    try:
        handler = getattr(runtime.subscriptions, action)
        try:
            source = handler(runtime.owner(owner), source_id)
        except NotFound as exc:
            typer.echo(f"Subscription not found: {source_id}")
            raise typer.Exit(code=1) from exc
        typer.echo(f"{action.capitalize()}d: {source.title or source.source_url}")
    finally:
        runtime.close()


@sub_app.command("pause")
def sub_pause(
    source_id: str = typer.Option(..., "--id"),
    owner: str | None = typer.Option(None, "--owner"),
) -> None:
    """Stop syncing a subscription."""

    _toggle("pause", source_id, owner)


@sub_app.command("resume")
def sub_resume(
    source_id: str = typer.Option(..., "--id"),
    owner: str | None = typer.Option(None, "--owner"),
) -> None:
    _toggle("resume", source_id, owner)


@sub_app.command("remove")
def sub_remove(
    source_id: str = typer.Option(..., "--id"),
    owner: str | None = typer.Option(None, "--owner"),
) -> None:
    """Remove a subscription. Stored articles are kept."""

    _toggle("remove", source_id, owner)


@app.command("sync")
def sync(
    owner: str | None = typer.Option(None, "--owner"),
    source_id: str | None = typer.Option(None, "--id", help="Sync only this subscription"),
) -> None:
    """Sync one subscription, or every active one."""

    runtime = _build_runtime()
    try:
        owner_id = runtime.owner(owner)
        if source_id:
            try:
                result = runtime.sync_service.sync_source(source_id, owner_id)
            except FeedStreamError as exc:
                typer.echo(f"sync failed: {exc}")
                raise typer.Exit(code=1) from exc
            typer.echo(f"sync done: new={result.new_articles} updated={result.updated}")
            return

        def on_progress(current: int, total: int, title: str) -> None:
            typer.echo(f"[{current}/{total}] {title}")

        batch = runtime.batch.sync_all(owner_id, on_progress=on_progress)
        typer.echo(
            "sync done: "
            f"total={batch.total_sources} successful={batch.successful} failed={batch.failed} "
            f"skipped={batch.skipped} new={batch.new_articles}"
        )
    finally:
        runtime.close()


@app.command("search")
def search(
    query: str = typer.Argument(..., help="Words to look for; terms shorter than 3 characters are ignored"),
    owner: str | None = typer.Option(None, "--owner"),
    limit: int = typer.Option(50, "--limit", min=1, max=500),
) -> None:
    """Search stored articles by title and text."""

    runtime = _build_runtime()
    try:
        hits = runtime.subscriptions.search(runtime.owner(owner), query, limit=limit)
        typer.echo(render_search_hits(hits), nl=False)
    finally:
        runtime.close()


@config_app.command("show")
def config_show() -> None:
    """Print the effective configuration."""

    settings = get_settings()
    typer.echo(f"env_file={get_default_env_file()}")
    typer.echo(f"db_url={settings.db_url}")
    typer.echo(f"http_timeout_seconds={settings.http_timeout_seconds}")
    typer.echo(f"max_concurrency={settings.max_concurrency}")
    typer.echo(f"max_per_host={settings.max_per_host}")
    typer.echo(f"politeness_delay_ms={settings.politeness_delay_ms}")
    typer.echo(f"retention_cap={settings.retention_cap}")
    typer.echo(f"circuit_fail_threshold={settings.circuit_fail_threshold}")
    typer.echo(f"user_agent={settings.user_agent}")
    typer.echo(f"link_aggregator_hosts={','.join(settings.link_aggregator_hosts)}")
    typer.echo(f"default_owner={settings.default_owner}")
    typer.echo(f"log_level={settings.log_level}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
