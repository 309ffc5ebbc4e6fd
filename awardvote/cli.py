# awardvote/cli.py

import click
from flask import current_app
from flask.cli import with_appcontext

# Operator commands: `flask make-admin EMAIL`, `flask cleanup`


def register_commands(app):
    app.cli.add_command(make_admin)
    app.cli.add_command(cleanup)


@click.command('make-admin')
@click.argument('email')
@click.option('--revoke', is_flag=True, help='Remove admin rights instead of granting them.')
@with_appcontext
def make_admin(email, revoke):
    """Grant (or revoke) admin rights, creating the user if needed."""
    services = current_app.extensions['awardvote']
    validator = services.validator
    if not validator.validate_email(email):
        raise click.BadParameter(f"Invalid email address: {email}")
    user = services.authenticator.set_admin(email, is_admin=not revoke)
    services.audit.log_security_event('admin_changed', {'email': user.email, 'is_admin': user.is_admin})
    click.echo(f"{user.email} is_admin={user.is_admin}")


@click.command('cleanup')
@with_appcontext
def cleanup():
    """Delete expired credentials, sessions and rate-limit windows."""
    services = current_app.extensions['awardvote']
    credentials = services.credentials.purge_expired()
    sessions = services.sessions.purge_expired()
    windows = services.rate_limiter.purge_expired()
    services.lockout.clear_old_records()
    click.echo(f"Removed {credentials} credentials, {sessions} sessions, {windows} rate-limit windows")
