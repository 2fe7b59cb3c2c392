"""Lookup of booking owners (identity, Stripe customer, membership)."""

from typing import TYPE_CHECKING, Any

from booking_core.models import User

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService


class UserDirectory:
    """Reads and writes User records in the users table."""

    TABLE = "users"

    def __init__(self, db: "DynamoDBService") -> None:
        self.db = db

    def get_user(self, user_id: str) -> User | None:
        item = self.db.get_item(self.TABLE, {"user_id": user_id})
        if not item:
            return None
        return User(
            user_id=item["user_id"],
            email=item.get("email"),
            stripe_customer_id=item.get("stripe_customer_id"),
            membership_active=bool(item.get("membership_active", True)),
        )

    def put_user(self, user: User) -> bool:
        item: dict[str, Any] = {
            "user_id": user.user_id,
            "membership_active": user.membership_active,
        }
        if user.email:
            item["email"] = user.email
        if user.stripe_customer_id:
            item["stripe_customer_id"] = user.stripe_customer_id
        return self.db.put_item(self.TABLE, item)
