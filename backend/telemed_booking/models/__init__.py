from .availability import Base, AvailabilitySettingsRow

__all__ = ["Base", "AvailabilitySettingsRow"]
