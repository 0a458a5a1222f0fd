"""
Telegram HTML rendering for leaderboards and member stats.
"""
from html import escape
from typing import List, Sequence, Tuple

from app.services.leaderboard.models import Leaderboard, MemberStats, PeriodStats, RankedEntry

LIVE_TITLE_PREFIX = "🏆 LEADERBOARD"
FINAL_TITLE_PREFIX = "🏁 FINAL RESULTS"

NAME_COLUMN_WIDTH = 18


def live_title(period: str) -> str:
    return f"{LIVE_TITLE_PREFIX} — {period}"


def final_title(period: str) -> str:
    return f"{FINAL_TITLE_PREFIX} — {period}"


def clamp_name(name: str, width: int = NAME_COLUMN_WIDTH) -> str:
    name = str(name or "")
    return name if len(name) <= width else name[:width - 1] + "…"


def format_table(headers: Tuple[str, str], rows: Sequence[Tuple[str, str]], width: int = NAME_COLUMN_WIDTH) -> str:
    """Two-column monospace table inside <pre>."""
    head = headers[0].ljust(width) + headers[1]
    lines: List[str] = [head, "─" * (width + len(headers[1]))]
    for name, value in rows:
        lines.append(clamp_name(name, width).ljust(width) + str(value))
    return "<pre>" + escape("\n".join(lines)) + "</pre>"


def _invite_rows(entries: Sequence[RankedEntry]) -> List[Tuple[str, str]]:
    return [(f"{e.rank}. {e.display_name}", str(e.invites)) for e in entries]


def _earner_rows(entries: Sequence[RankedEntry], currency: str) -> List[Tuple[str, str]]:
    return [(f"{e.rank}. {e.display_name}", f"{currency}{e.earnings}") for e in entries]


def render_leaderboard(board: Leaderboard, *, final: bool = False) -> str:
    title = final_title(board.period) if final else live_title(board.period)

    if board.entries:
        invites = format_table(("User", "Invites"), _invite_rows(board.entries))
    else:
        invites = "No invites this month." if final else "No invites yet this month."

    if board.earners:
        earners = format_table(("User", "Total Earnings"), _earner_rows(board.earners, board.currency))
    else:
        earners = "No qualified referrals yet."

    return (
        f"<b>{escape(title)}</b>\n\n"
        f"🔥 <b>Top Inviters</b>\n{invites}\n\n"
        f"💰 <b>Top Affiliates</b>\n{earners}"
    )


def _stats_block(label: str, stats: PeriodStats, currency: str) -> str:
    return (
        f"<b>{escape(label)}</b>\n"
        f"Invites: <b>{stats.invites}</b>\n"
        f"Qualified: <b>{stats.qualified}</b>\n"
        f"Earned: <b>{escape(currency)}{stats.earnings}</b>"
    )


def render_member_stats(stats: MemberStats) -> str:
    return "\n\n".join([
        "📈 <b>Your Affiliate Stats</b>",
        _stats_block(f"This Month — {stats.current_period}", stats.current, stats.currency),
        _stats_block(f"Last Month — {stats.previous_period}", stats.previous, stats.currency),
        _stats_block("All-time", stats.all_time, stats.currency),
    ])
