from __future__ import annotations

from typing import Iterable, Optional

from rich import print
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import AppConfig, load_config, repo_root
from .models import (
    HORIZONS,
    ReprocessResult,
    TimelineVersion,
    Visibility,
    format_number,
)
from .openai_client import CompletionClient
from .reprocess import TimelineReprocessor
from .service import TimelineService
from .store import TimelineStore
from .synthesis import TimelineSynthesizer

console = Console()


def open_store(cfg: AppConfig) -> TimelineStore:
    return TimelineStore(cfg.db_path, retry_attempts=cfg.version_retry_attempts)


def build_service(cfg: AppConfig, *, with_client: bool = True) -> TimelineService:
    if not with_client:
        return TimelineService(open_store(cfg))
    # a missing API key fails here, before the database is opened
    client = CompletionClient.from_config(cfg)
    store = open_store(cfg)
    synthesizer = TimelineSynthesizer(client, cfg)
    return TimelineService(store, synthesizer, TimelineReprocessor(client, cfg, synthesizer))


def _timelines_table(title: str, timelines: Iterable[TimelineVersion]) -> Table:
    t = Table(title=title)
    t.add_column("slug")
    t.add_column("v", justify="right")
    t.add_column("topic")
    t.add_column("present", justify="right")
    t.add_column("visibility")
    t.add_column("views", justify="right")
    t.add_column("updated")
    for tv in timelines:
        t.add_row(
            tv.slug,
            str(tv.version),
            escape(tv.topic),
            f"{format_number(tv.present_entry.value)} {escape(tv.value_label)}",
            tv.visibility.value,
            str(tv.view_count),
            tv.updated_at.strftime("%Y-%m-%d %H:%M"),
        )
    return t


def print_timeline(tv: TimelineVersion) -> None:
    print(f"[bold]{escape(tv.topic)}[/bold]  slug={tv.slug} version={tv.version} visibility={tv.visibility.value} views={tv.view_count}")
    print(f"value_label={escape(tv.value_label)}")

    past = Table(title=f"history ({len(tv.past_entries)} events)")
    past.add_column("date")
    past.add_column("value", justify="right")
    past.add_column("summary")
    past.add_column("sources", justify="right")
    for e in tv.past_entries:
        past.add_row(e.date.isoformat(), format_number(e.value), escape(e.summary[:100]), str(len(e.sources)))
    console.print(past)

    p = tv.present_entry
    print(f"[bold]present[/bold] {p.date.isoformat()}: {format_number(p.value)}  {escape(p.summary)}")

    print_predictions(tv.predictions)


def print_predictions(predictions) -> None:
    t = Table(title=f"predictions ({len(predictions)} horizons)")
    t.add_column("horizon")
    t.add_column("scenario")
    t.add_column("predicted", justify="right")
    t.add_column("confidence", justify="right")
    for pred in predictions:
        for i, s in enumerate(pred.scenarios):
            t.add_row(
                pred.timeline if i == 0 else "",
                escape(s.title),
                format_number(s.predicted_value),
                f"{format_number(s.confidence_score)}%",
            )
    console.print(t)


def cmd_ping() -> None:
    cfg = load_config()
    root = repo_root()

    print(f"[bold]topic-timeline[/bold] version={__version__}")
    print(f"env={cfg.env}")
    print(f"repo_root={root}")

    settings_path = root / "configs" / "settings.yaml"
    print(f"settings.yaml exists={settings_path.exists()}")

    # Key presence only (never print keys)
    print(f"OPENAI_API_KEY present={cfg.openai_api_key_present}")
    print(f"model={cfg.openai_model} research_model={cfg.openai_research_model}")
    print(f"timeout_s={cfg.request_timeout_s} years_back={cfg.years_back}")

    store = open_store(cfg)
    try:
        counts = store.counts()
    finally:
        store.close()
    print(f"db_path={cfg.db_path}")
    print(f"timelines={counts['timelines']} versions={counts['versions']}")


def cmd_generate(topic: str, user_id: Optional[str], visibility: Visibility) -> None:
    cfg = load_config()
    service = build_service(cfg)
    try:
        tv = service.generate(topic, user_id=user_id, visibility=visibility)
    finally:
        service.store.close()
    print_timeline(tv)
    if len(tv.predictions) < len(HORIZONS):
        print(f"[yellow]partial coverage:[/yellow] {len(tv.predictions)}/{len(HORIZONS)} horizons")
    print(f"stored: {tv.slug} v{tv.version}")


def cmd_show(slug: str, version: Optional[int], user_id: Optional[str], as_json: bool) -> None:
    service = build_service(load_config(), with_client=False)
    try:
        tv = service.get(slug, version, user_id=user_id)
    finally:
        service.store.close()
    if as_json:
        console.print_json(data=tv.model_dump(mode="json", by_alias=True))
        return
    print_timeline(tv)


def cmd_versions(slug: str) -> None:
    service = build_service(load_config(), with_client=False)
    try:
        versions = service.versions(slug)
    finally:
        service.store.close()
    t = Table(title=f"versions of {escape(slug)}")
    t.add_column("version", justify="right")
    t.add_column("created")
    t.add_column("present value", justify="right")
    for v in versions:
        t.add_row(str(v.version), v.created_at.isoformat(), format_number(v.present_value))
    console.print(t)


def print_reprocess(result: ReprocessResult) -> None:
    print(f"previous={format_number(result.previous_value)} new={format_number(result.new_value)} change={result.delta.describe()}")
    print_predictions(result.predictions)
    if result.missing_horizons:
        print(f"[yellow]missing horizons:[/yellow] {', '.join(result.missing_horizons)}")


def cmd_reprocess(slug: str, user_id: str, save: bool) -> None:
    cfg = load_config()
    service = build_service(cfg)
    try:
        result = service.reprocess(slug, user_id)
        print_reprocess(result)
        if not save:
            print("not saved (use --save to store as a new version)")
            return
        tv = service.commit_version(slug, user_id, result.present_entry, result.predictions)
        print(f"stored: {tv.slug} v{tv.version}")
    finally:
        service.store.close()


def cmd_search(query: str, limit: int, offset: int) -> None:
    service = build_service(load_config(), with_client=False)
    try:
        timelines, total = service.search(query, limit=limit, offset=offset)
    finally:
        service.store.close()
    console.print(_timelines_table(f"search {escape(repr(query))}: {total} match(es)", timelines))


def cmd_popular(limit: int) -> None:
    service = build_service(load_config(), with_client=False)
    try:
        timelines = service.popular(limit)
    finally:
        service.store.close()
    console.print(_timelines_table("popular", timelines))


def cmd_mine(user_id: str) -> None:
    service = build_service(load_config(), with_client=False)
    try:
        timelines = service.user_timelines(user_id)
    finally:
        service.store.close()
    console.print(_timelines_table(f"timelines of {escape(user_id)}", timelines))


def cmd_visibility(slug: str, user_id: str, visibility: Visibility) -> None:
    service = build_service(load_config(), with_client=False)
    try:
        tv = service.set_visibility(slug, user_id, visibility)
    finally:
        service.store.close()
    print(f"{tv.slug}: visibility={tv.visibility.value}")


def cmd_delete(slug: str, user_id: str) -> None:
    service = build_service(load_config(), with_client=False)
    try:
        service.delete(slug, user_id)
    finally:
        service.store.close()
    print(f"deleted: {escape(slug)}")
