"""Memorable display names for forks.

Fork ids are short random strings; names give a human something to
recognise in listings ("Wendell the Unhurried", "a Committee of Otters, MBA").
Names are decorative and not unique.
"""

from __future__ import annotations

import random

_HEADS = (
    "Wendell", "Agatha", "Horace", "Philippa", "Desmond", "Ottoline",
    "Ambrose", "Winifred", "Cuthbert", "Rosalind", "Percival", "Mabel",
    "Professor Crumpet", "Aunt Verity", "Captain Lint", "Doctor Backlog",
    "Sister Semicolon", "Baron Von Cache", "Admiral Nullpointer",
    "the Night Auditor", "the Person Who Fixes the Printer",
    "a Committee of Otters", "Two Pigeons Sharing a Hat",
    "the Ghost of Deadlines Past", "a Very Polite Tornado",
    "Steve From Accounts", "the Backup Drummer", "Moth",
)

_EPITHETS = (
    "the Unhurried", "the Thorough", "the Mildly Concerned", "the Persistent",
    "the Well-Rested", "the Overcaffeinated", "the Idempotent",
    "the Eventually Consistent", "the Off-By-One", "the Tab-Hoarder",
    "the Last to Leave", "the Reader of Manuals", "the Lint-Free",
)

_TITLES = (
    "MBA", "DDS", "Notary Public", "Keeper of the Staging Server",
    "Warden of the Flaky Test", "Marquess of Markdown",
    "Deputy Assistant to the Regional Build", "Friend of the Linter",
    "who has read the whole README", "who brought snacks",
)

_DOMAINS = (
    "the Unmerged Branch", "the Endless Retro", "the Silent Pager",
    "the Half-Written Migration", "the Bottomless Inbox",
    "the Untested Edge Case", "the Shared Spreadsheet",
)


def generate_name(rng: random.Random | None = None) -> str:
    """Return a random display name.

    Args:
        rng: Random source, for reproducible names in tests.
    """
    rng = rng or random.Random()
    head = rng.choice(_HEADS)
    style = rng.randrange(4)
    if style == 0:
        return f"{head} {rng.choice(_EPITHETS)}"
    if style == 1:
        return f"{head}, {rng.choice(_TITLES)}"
    if style == 2:
        return f"{head} of {rng.choice(_DOMAINS)}"
    return head
