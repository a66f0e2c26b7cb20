"""Script to create a development user (client or maker) and print an access token."""
import asyncio
import sys
from pathlib import Path

# Add parent directory to path to import voxelhub modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from voxelhub.domain.common.types import generate_id, utcnow
from voxelhub.domain.settlement.models import MakerProfile
from voxelhub.domain.users.models import User, UserRole
from voxelhub.infra.db.base import AsyncSessionLocal
from voxelhub.infra.db.repositories.settlement_repo import MakerProfileRepositoryImpl
from voxelhub.infra.db.repositories.user_repo import UserRepositoryImpl
from voxelhub.infra.security.jwt import create_access_token


async def create_dev_user(email: str, role: UserRole) -> User:
    """Create the user unless it exists; makers also get an empty profile."""
    async with AsyncSessionLocal() as session:
        users = UserRepositoryImpl(session)
        user = await users.get_by_email(email)
        if user:
            print(f"User '{email}' already exists ({user.role.value}), reusing it.")
        else:
            now = utcnow()
            user = await users.create(
                User(
                    id=generate_id(),
                    email=email,
                    role=role,
                    first_name=email.split("@")[0].title(),
                    last_name=None,
                    is_active=True,
                    created_at=now,
                    updated_at=now,
                )
            )
            if role == UserRole.MAKER:
                await MakerProfileRepositoryImpl(session).save(MakerProfile(user_id=user.id))
            await session.commit()
            print(f"Created {role.value} '{email}'")
    return user


def main():
    if len(sys.argv) < 2:
        print("Usage: python scripts/create_dev_user.py <email> [client|maker]", file=sys.stderr)
        raise SystemExit(2)
    email = sys.argv[1]
    try:
        role = UserRole(sys.argv[2] if len(sys.argv) > 2 else "client")
    except ValueError:
        print(f"Unknown role: {sys.argv[2]} (expected client or maker)", file=sys.stderr)
        raise SystemExit(2)

    try:
        user = asyncio.run(create_dev_user(email, role))
    except OSError as e:
        if "Connect call failed" in str(e) or "Connection refused" in str(e):
            print("Database connection failed: PostgreSQL is not reachable.", file=sys.stderr)
            print("  Set DATABASE_URL to your database (e.g. export DATABASE_URL='postgresql://...').", file=sys.stderr)
            raise SystemExit(1) from e
        raise

    print(f"   ID: {user.id}")
    print(f"   Token: {create_access_token(user.id)}")


if __name__ == "__main__":
    main()
