"""Account profile persistence (credit balance)."""

from __future__ import annotations

from ..db.supabase import require_supabase_client

PROFILES = "profiles"


def read_credits(account_id: str) -> int | None:
    """Current balance, or None when the account has no profile row."""
    supabase = require_supabase_client()
    response = (
        supabase.table(PROFILES)
        .select("id, credits_remaining")
        .eq("id", account_id)
        .limit(1)
        .execute()
    )
    rows = response.data or []
    if not rows:
        return None
    return int(rows[0].get("credits_remaining") or 0)


def compare_and_set_credits(account_id: str, expected: int, new_value: int) -> bool:
    """Write ``new_value`` only if the stored balance still equals ``expected``."""
    supabase = require_supabase_client()
    response = (
        supabase.table(PROFILES)
        .update({"credits_remaining": new_value})
        .eq("id", account_id)
        .eq("credits_remaining", expected)
        .execute()
    )
    return bool(response.data)
