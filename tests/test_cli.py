from cronops.models.user import User
from cronops.utils.auth import load_user_from_token


def test_create_user(app):
    result = app.test_cli_runner().invoke(args=['create-user', 'ops@example.com', '--plan', 'PRO', '--name', 'Ops'])

    assert result.exit_code == 0, result.output
    user = User.query.filter_by(email='ops@example.com').one()
    assert user.plan == 'PRO'
    assert user.role == 'USER'
    assert f"with id {user.id}" in result.output


def test_create_user_rejects_unknown_plan(app):
    result = app.test_cli_runner().invoke(args=['create-user', 'ops@example.com', '--plan', 'GOLD'])
    assert result.exit_code != 0
    assert User.query.count() == 0


def test_issue_token(app, user):
    result = app.test_cli_runner().invoke(args=['issue-token', user.email])

    assert result.exit_code == 0
    assert load_user_from_token(result.output.strip()).id == user.id


def test_issue_token_for_unknown_user(app):
    result = app.test_cli_runner().invoke(args=['issue-token', 'ghost@example.com'])
    assert result.exit_code == 1
    assert 'No user with email ghost@example.com' in result.output
