"""Exception hierarchy shared by the locker core and the GUI."""


class LockerError(Exception):
    """Base class for every error the locker raises on purpose."""


class EntryValidationError(LockerError):
    """A field of the add form was rejected before anything was written."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class ReloadInProgressError(LockerError):
    """Raised when a reload is requested while another is still running."""


class StorageError(LockerError):
    """An image could not be fetched, decoded or written to the cache."""


class DiscordError(LockerError):
    """The Discord API answered with an error or could not be reached."""


class DiscordUserNotFound(DiscordError):
    def __init__(self, user_id: str):
        super().__init__(f"Discord user {user_id} does not exist")
        self.user_id = user_id
