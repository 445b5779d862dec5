class PlatformError(Exception):
    """Base class for errors raised by the Kick/Twitch clients outside of plain HTTP failures."""


class PlatformNotConfiguredError(PlatformError):
    pass


class TokenError(PlatformError):
    pass


class CategoryNotFoundError(PlatformError):
    def __init__(self, category_name: str):
        super().__init__(f"No category matching '{category_name}'")
        self.category_name = category_name
