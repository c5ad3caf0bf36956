"""
Flask CLI commands.

Commands:
- flask init-db: Create all tables
- flask sales-report: Print the sales report summary for a date window
"""
from datetime import date, timedelta

import click
from flask import current_app

from orderdesk import database


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    @click.option('--drop', is_flag=True, help='Drop existing tables first')
    def init_db_command(drop):
        """Create the database schema."""
        if drop:
            click.confirm('This deletes ALL data. Continue?', abort=True)
            database.drop_all()
            click.echo('Dropped all tables.')
        database.create_all()
        click.echo(click.style('Database schema created.', fg='green'))

    @app.cli.command('sales-report')
    @click.option('--start', type=click.DateTime(formats=['%Y-%m-%d']), default=None, help='First day (YYYY-MM-DD)')
    @click.option('--end', type=click.DateTime(formats=['%Y-%m-%d']), default=None, help='Last day, inclusive')
    def sales_report_command(start, end):
        """Print the sales report summary."""
        from orderdesk.services.report_service import generate_sales_report

        end_day = end.date() if end else date.today()
        start_day = start.date() if start else end_day - timedelta(days=current_app.config.get('DEFAULT_REPORT_DAYS', 30))

        report = generate_sales_report(database.get_session(), start_day, end_day)
        click.echo(f'Sales report {start_day} -> {end_day}')
        for key, value in report.summary.items():
            click.echo(f'  {key}: {value}')
        for segment, count in report.customer_segments.items():
            click.echo(f'  segment {segment}: {count}')
