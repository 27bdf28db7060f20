from .rolling import ROLLING_COLUMN, rolling_average

__all__ = ["ROLLING_COLUMN", "rolling_average"]
