"""UCP code generation.

Format: ``UCP-{date}-{seq:4}`` where ``{date}`` is YYYYMMDD and the
sequence restarts every day, e.g. ``UCP-20260219-0001``.
"""

import re
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.warehouse.ucp import Ucp

UCP_FORMAT = "UCP-{date}-{seq:4}"


def _build_prefix(fmt: str, today_str: str) -> str:
    """Everything before ``{seq:N}``."""
    prefix = fmt.replace("{date}", today_str)
    return re.sub(r"\{seq:\d+\}.*$", "", prefix)


async def _last_sequence(db: AsyncSession, prefix: str) -> int:
    """Highest sequence already issued for ``prefix`` (0 if none).

    Codes share the prefix, so a longer code carries a larger sequence once
    it outgrows the zero padding (``-10000`` after ``-9999``).
    """
    last_code = await db.scalar(
        select(Ucp.code)
        .where(Ucp.code.like(f"{prefix}%"))
        .order_by(func.length(Ucp.code).desc(), Ucp.code.desc())
        .limit(1)
    )
    if not last_code:
        return 0
    match = re.search(r"(\d+)$", last_code)
    return int(match.group(1)) if match else 0


async def generate_ucp_code(db: AsyncSession, today: date | None = None) -> str:
    """Next free UCP code for ``today``.

    Uses the max existing code rather than a count so that gaps never
    produce a duplicate.  The unique index on ``ucps.code`` is the final
    guard against two concurrent callers.
    """
    today_str = (today or date.today()).strftime("%Y%m%d")
    prefix = _build_prefix(UCP_FORMAT, today_str)
    seq_num = await _last_sequence(db, prefix) + 1

    seq_match = re.search(r"\{seq:(\d+)\}", UCP_FORMAT)
    seq_width = int(seq_match.group(1)) if seq_match else 4

    code = UCP_FORMAT.replace("{date}", today_str)
    return re.sub(r"\{seq:\d+\}", f"{seq_num:0{seq_width}d}", code)
