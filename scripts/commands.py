# commands.py

import click
from flask import current_app
from flask.cli import with_appcontext
from extensions import db


@click.command('init-db')
@with_appcontext
def init_db():
    """Create all database tables"""
    import crm_database  # noqa: F401  registers the models
    db.create_all()
    click.echo('Database tables created.')


@click.command('analyze-pending')
@click.option('--owner-id', default=None, help='Only analyze contacts of this owner')
@click.option('--limit', default=None, type=int, help='Contacts per owner (default BATCH_ANALYSIS_LIMIT)')
@with_appcontext
def analyze_pending(owner_id, limit):
    """Analyze and assign contacts that have no analysis yet"""
    lead_pipeline_service = current_app.services.get('lead_pipeline')
    processed = lead_pipeline_service.process_pending_for_owners(owner_id=owner_id, limit=limit)

    if not processed:
        click.echo('No owners to process.')
        return
    for owner, count in processed.items():
        click.echo(f'{owner}: {count} contacts processed')


@click.command('sync-ad-metrics')
@click.option('--owner-id', default=None, help='Only sync ad accounts of this owner')
@with_appcontext
def sync_ad_metrics(owner_id):
    """Pull campaign and daily ad metrics from Ads Insights"""
    ads_insights_service = current_app.services.get('ads_insights')
    summary = ads_insights_service.sync_all(owner_id=owner_id).data

    if not summary['accounts']:
        click.echo('No ad accounts configured.')
        return
    for account in summary['results']:
        line = f"{account['owner_id']} {account['ad_account_id']}: "
        if account.get('error'):
            click.echo(line + f"failed ({account['error']})", err=True)
        else:
            click.echo(line + f"{account['campaigns']} campaigns, {account['ad_days']} ad days")


def init_app(app):
    """Register commands with the Flask app"""
    app.cli.add_command(init_db)
    app.cli.add_command(analyze_pending)
    app.cli.add_command(sync_ad_metrics)
