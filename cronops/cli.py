import click

from cronops.models.enums import Plan, Role, values
from cronops.models.user import User
from cronops.services.user_service import UserService
from cronops.utils.auth import issue_access_token


def register_commands(app):
    @app.cli.command('create-user')
    @click.argument('email')
    @click.option('--name', default=None)
    @click.option('--role', type=click.Choice(values(Role)), default=Role.USER.value)
    @click.option('--plan', type=click.Choice(values(Plan)), default=Plan.FREE.value)
    def create_user(email, name, role, plan):
        """Create a user account"""
        user = UserService.create_user(email, name=name, role=role, plan=plan)
        click.echo(f"Created {user.role} {user.email} ({user.plan}) with id {user.id}")

    @app.cli.command('issue-token')
    @click.argument('email')
    def issue_token(email):
        """Print a bearer token for an existing user"""
        user = User.query.filter_by(email=email).first()
        if user is None:
            raise click.ClickException(f"No user with email {email}")
        click.echo(issue_access_token(user))
