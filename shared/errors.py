class SyncError(Exception):
    """Base class for errors raised by the sync layer."""


class InvalidPlatform(SyncError):
    def __init__(self, platform):
        self.platform = platform
        super().__init__(f"Unsupported platform: {platform!r} (expected 'web' or 'mobile')")


class ScopeMismatch(SyncError):
    def __init__(self, channel: str, scope: str):
        self.channel = channel
        self.scope = scope
        super().__init__(f"Channel {channel} cannot be published to a {scope} scope")
