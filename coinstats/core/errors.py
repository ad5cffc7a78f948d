class CoinStatsError(Exception):
    """Base class for every error raised by the service."""


class MissingParameter(CoinStatsError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name.capitalize()} parameter is required")


class NotFound(CoinStatsError):
    def __init__(self, coin: str):
        self.coin = coin
        super().__init__("Coin not found")


class InsufficientData(CoinStatsError):
    def __init__(self, coin: str, available: int, required: int = 2):
        self.coin = coin
        self.available = available
        self.required = required
        super().__init__("Not enough data for deviation calculation")


class FetchError(CoinStatsError):
    """Provider unreachable, returned an error status or a malformed body."""


class StorageError(CoinStatsError):
    """Persistence unavailable or a write failed."""
