"""Bootstrap an administrator and an admin-scoped API key."""
import argparse

from sqlalchemy import select

from app.db import init_engine, session_scope
from app.models.api_key import ApiKey, ApiScope
from app.models.user import User, UserRole
from app.utils.apikey import gen_key


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--email", default="admin@example.com")
    parser.add_argument("--name", default="Platform Admin")
    args = parser.parse_args()

    init_engine()
    with session_scope() as db:
        # Reuse the admin if the script already ran for this email
        admin = db.scalars(select(User).where(User.email == args.email)).first()
        if admin is None:
            admin = User(name=args.name, email=args.email, role=UserRole.admin)
            db.add(admin)
            db.flush()

        raw_token, prefix, key_hash = gen_key()
        api_key = ApiKey(
            name=f"bootstrap-admin-{prefix}",
            prefix=prefix,
            key_hash=key_hash,
            scope=ApiScope.admin,
            user_id=admin.id,
            is_active=True,
        )
        db.add(api_key)
        db.flush()
        key_id, admin_id = api_key.id, admin.id

    print("==========================================")
    print("Admin API key created")
    print("Use this key in your Authorization header:")
    print(f"    Authorization: Bearer {raw_token}")
    print(f"(DB id: {key_id}, user id: {admin_id}, scope: admin)")
    print("==========================================")


if __name__ == "__main__":
    main()
