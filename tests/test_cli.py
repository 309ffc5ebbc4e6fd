from awardvote import db
from awardvote.database.models import User


def test_make_admin(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=['make-admin', 'Chair@X.com'])

    assert result.exit_code == 0
    assert 'chair@x.com is_admin=True' in result.output
    assert db.session.query(User).filter_by(email='chair@x.com').one().is_admin is True


def test_make_admin_revoke(app, services):
    services.authenticator.set_admin('chair@x.com')
    result = app.test_cli_runner().invoke(args=['make-admin', 'chair@x.com', '--revoke'])

    assert result.exit_code == 0
    assert 'is_admin=False' in result.output


def test_make_admin_rejects_bad_email(app):
    result = app.test_cli_runner().invoke(args=['make-admin', 'not-an-email'])
    assert result.exit_code != 0
    assert db.session.query(User).count() == 0


def test_cleanup(app, services, voter, frozen_clock):
    services.credentials.request_credential('a@x.com')
    services.sessions.create_session(voter)
    frozen_clock.advance(days=8)

    result = app.test_cli_runner().invoke(args=['cleanup'])
    assert result.exit_code == 0
    assert 'Removed 1 credentials, 1 sessions, 3 rate-limit windows' in result.output
