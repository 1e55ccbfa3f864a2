"""Text shown in the information column and copied to the clipboard."""
from typing import Optional

from core.models import DirtRecord, UserRecord

NO_NOTES = "No notes"


def information_string(record: DirtRecord, user: Optional[UserRecord], pasteable: bool = False) -> str:
    """
    Describe a dirt entry. ``pasteable`` switches to Discord markdown with a
    user mention, for pasting into a moderation channel.
    """
    username = user.username if user else record.username
    total = user.total_dirt_count if user else 0
    notes = record.notes or NO_NOTES

    if pasteable:
        return "\n".join([
            f"**Indexation ID:** `{record.indexation_id}`",
            f"**User:** <@{record.user_id}> ({username}, `{record.user_id}`)",
            f"**Total dirt:** {total}",
            f"**Notes:** {notes}",
        ])
    return "\n".join([
        f"Indexation ID: {record.indexation_id}",
        f"User: {username} ({record.user_id})",
        f"Total dirt: {total}",
        f"Notes: {notes}",
    ])


def entries_label(count: int) -> str:
    noun = "entry" if count == 1 else "entries"
    return f"Now displaying {count} {noun}"
