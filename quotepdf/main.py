from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

import typer

from . import config
from .config import CompanyProfile, ReportOptions, load_offer_settings
from .models import RunStatus, reset_engine
from .pipeline.ingest import ingest_records, list_runs
from .pipeline.run import run_pipeline

app = typer.Typer(help="Paginated PDF reports for customer quote requests")


def _configure(out: Optional[Path], verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if out:
        config.set_out_dir(out)
        reset_engine()


def _options(
    lang: str,
    offer: bool,
    recipient: Optional[str],
    offer_number: Optional[str],
    company: Optional[str],
    no_watermark: bool,
    appendix: Optional[str],
    offer_config: Optional[Path] = None,
) -> ReportOptions:
    if lang not in config.SUPPORTED_LANGUAGES:
        raise typer.BadParameter(f"Unsupported language: {lang}", param_hint="--lang")
    if appendix not in (None, "indexed", "compact"):
        raise typer.BadParameter("Use indexed or compact", param_hint="--appendix")
    settings: dict = {}
    if offer_config is not None:
        try:
            settings = load_offer_settings(offer_config)
        except (OSError, ValueError) as exc:
            raise typer.BadParameter(str(exc), param_hint="--offer-config") from exc
    # command line values win over the offer configuration file
    if recipient:
        settings["recipient_name"] = recipient
    if offer_number:
        settings["offer_number"] = offer_number
    if offer or offer_config is not None:
        options = ReportOptions.client_offer(
            language=lang,
            company=CompanyProfile(name=company or ""),
            watermark=not no_watermark,
            **settings,
        )
    else:
        options = ReportOptions.internal(language=lang)
    if appendix:
        options = replace(options, appendix_style=appendix)
    return options


def _report(results: dict[str, list[str]]) -> None:
    typer.echo(f"READY: {len(results['READY'])}")
    typer.echo(f"FAILED: {len(results['FAILED'])}")
    for slug in results["FAILED"]:
        typer.echo(f"FAILED: {slug}")


@app.command()
def render(
    records: List[Path] = typer.Argument(..., help="Record JSON files"),
    out: Optional[Path] = typer.Option(None, "--out", help="Output directory"),
    lang: str = typer.Option(config.DEFAULT_LANGUAGE, "--lang", help="en, fr or zh"),
    offer: bool = typer.Option(False, "--offer", help="Client offer variant"),
    recipient: Optional[str] = typer.Option(None, "--recipient", help="Offer recipient"),
    offer_number: Optional[str] = typer.Option(None, "--offer-number", help="Offer number"),
    company: Optional[str] = typer.Option(None, "--company", help="Company name for the offer header"),
    no_watermark: bool = typer.Option(False, "--no-watermark", help="Offer without watermark"),
    appendix: Optional[str] = typer.Option(None, "--appendix", help="indexed or compact"),
    offer_config: Optional[Path] = typer.Option(
        None, "--offer-config", help="Offer JSON: intro, lines, section toggles, selected attachments"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    _configure(out, verbose)
    options = _options(lang, offer, recipient, offer_number, company, no_watermark, appendix, offer_config)
    runs = ingest_records(records)
    typer.echo(f"Ingested {len(runs)} records")
    _report(run_pipeline(runs, options))


@app.command()
def retry(
    out: Optional[Path] = typer.Option(None, "--out", help="Output directory"),
    lang: str = typer.Option(config.DEFAULT_LANGUAGE, "--lang", help="en, fr or zh"),
    offer: bool = typer.Option(False, "--offer", help="Client offer variant"),
    recipient: Optional[str] = typer.Option(None, "--recipient", help="Offer recipient"),
    offer_number: Optional[str] = typer.Option(None, "--offer-number", help="Offer number"),
    company: Optional[str] = typer.Option(None, "--company", help="Company name for the offer header"),
    no_watermark: bool = typer.Option(False, "--no-watermark", help="Offer without watermark"),
    appendix: Optional[str] = typer.Option(None, "--appendix", help="indexed or compact"),
    offer_config: Optional[Path] = typer.Option(
        None, "--offer-config", help="Offer JSON: intro, lines, section toggles, selected attachments"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    _configure(out, verbose)
    runs = list_runs([RunStatus.FAILED])
    if not runs:
        typer.echo("No failed runs to retry")
        return
    for run in runs:
        typer.echo(f"Retrying {run.slug} ({run.fail_code}: {run.fail_detail})")
    options = _options(lang, offer, recipient, offer_number, company, no_watermark, appendix, offer_config)
    _report(run_pipeline(runs, options))


if __name__ == "__main__":
    app()
