from datetime import date, datetime, timezone
from typing import Optional

from .models import Role, SubmissionStatus


def _day_of(timestamp: str) -> Optional[date]:
    try:
        return datetime.fromisoformat(timestamp.replace("Z", "+00:00")).astimezone(timezone.utc).date()
    except (AttributeError, ValueError):
        return None


def _as_number(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def compute_stats(
    users: dict,
    transactions: list,
    gift_card_submissions: list,
    today: Optional[date] = None,
) -> dict:
    """Dashboard counters for the admin console."""
    today = today or datetime.now(timezone.utc).date()
    user_list = list(users.values())
    pending = sum(1 for s in gift_card_submissions if s.get("status") == SubmissionStatus.PENDING.value)

    return {
        "totalUsers": len(user_list),
        "totalBalance": sum(_as_number(u.get("balance")) for u in user_list),
        "activeUsers": sum(1 for u in user_list if u.get("status") == "active"),
        "admins": sum(1 for u in user_list if u.get("role") == Role.ADMIN.value),
        "totalTransactions": len(transactions),
        "todayTransactions": sum(1 for t in transactions if _day_of(t.get("timestamp", "")) == today),
        "pendingActivations": pending,
        "activatedUsers": sum(1 for u in user_list if u.get("activated")),
        "giftCardSubmissions": len(gift_card_submissions),
        "pendingGiftCards": pending,
    }
