import asyncio
import click
from dmreply.core.database import SessionLocal
from dmreply.models.user import User, MembershipType
from dmreply.services.instagram_auth_service import InstagramAuthService
from dmreply.services.membership_service import MembershipService
import logging

logger = logging.getLogger(__name__)

MEMBERSHIP_CHOICES = [m.value for m in MembershipType]


@click.group()
def cli():
    """DM Reply admin commands"""
    pass


@cli.command()
@click.option('--email', required=False, help='User email')
@click.option('--id', 'user_id', required=False, help='User id')
@click.option('--set', 'new_type', required=False, type=click.Choice(MEMBERSHIP_CHOICES, case_sensitive=False),
              help='Set the stored membership type')
def membership(email, user_id, new_type):
    """Show or set a user's membership"""
    db = SessionLocal()
    try:
        if not email and not user_id:
            click.echo("❌ Please provide --email or --id for this operation", err=True)
            return

        if user_id:
            user = db.query(User).filter(User.id == user_id).first()
        else:
            user = db.query(User).filter(User.email == email.lower()).first()

        if not user:
            target = user_id or email
            click.echo(f"❌ User not found: {target}", err=True)
            return

        display_ident = user.email or user.id
        if new_type:
            user.membership_type = MembershipType(new_type.upper())
            db.commit()
            click.echo(f"✓ Set membership for {display_ident} to {user.membership_type.value}")
            return

        effective = MembershipService().effective_membership(db, user)
        trial = user.trial_start_date.isoformat() if user.trial_start_date else "-"
        click.echo(f"User {display_ident}: {effective.value} (stored: {user.membership_type.value}, trial start: {trial})")
    except Exception as e:
        db.rollback()
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


@cli.command(name='expire-trials')
def expire_trials():
    """Downgrade every expired trial to FREE"""
    db = SessionLocal()
    try:
        count = MembershipService().expire_trials(db)
        click.echo(f"✓ Expired {count} trials")
    except Exception as e:
        db.rollback()
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


@cli.command(name='refresh-instagram-tokens')
def refresh_instagram_tokens():
    """Refresh Instagram tokens that expire soon"""
    db = SessionLocal()
    try:
        results = asyncio.run(InstagramAuthService().refresh_expiring_tokens(db))
        click.echo(f"✓ Refreshed {results['success']} of {results['total']} Instagram tokens")
        for error in results["errors"]:
            click.echo(f"❌ {error['username'] or error['userId']}: {error['error']}", err=True)
    except Exception as e:
        db.rollback()
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


if __name__ == '__main__':
    cli()
