from sqlalchemy import select

from app.domain.models.user import User
from app.infrastructure.db.session import SessionLocal


DEFAULT_USER_EMAIL = "owner@billing.local"
DEFAULT_USER_NAME = "Billing Dev Owner"
DEFAULT_STRIPE_CUSTOMER_ID = "cus_dev_owner"


def seed_dev_data() -> None:
    with SessionLocal() as db:
        existing_user = db.execute(select(User).where(User.email == DEFAULT_USER_EMAIL)).scalar_one_or_none()
        if existing_user is not None:
            print(f"Seed exists: user_id={existing_user.id} stripe_customer_id={existing_user.stripe_customer_id}")
            return

        user = User(
            email=DEFAULT_USER_EMAIL,
            name=DEFAULT_USER_NAME,
            stripe_customer_id=DEFAULT_STRIPE_CUSTOMER_ID,
        )
        db.add(user)
        db.commit()

        print("Created dev seed data:")
        print(f"- user_id: {user.id}")
        print(f"- email: {user.email}")
        print(f"- stripe_customer_id: {user.stripe_customer_id}")


if __name__ == "__main__":
    seed_dev_data()
