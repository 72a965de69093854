from __future__ import annotations


class HazardError(Exception):
    """Base error for the hazard engine; `user_message` is safe to show inline."""

    default_message = "Something went wrong. Please try again."

    def __init__(self, detail: str | None = None, *, user_message: str | None = None) -> None:
        super().__init__(detail or user_message or self.default_message)
        self.user_message = user_message or self.default_message


class PermissionDenied(HazardError):
    default_message = "Microphone access was denied. Allow access in your settings and try again."


class DeviceUnavailable(HazardError):
    default_message = "No usable audio device was found, or it is busy. Check the device and try again."


class ClassificationError(HazardError):
    default_message = "Could not analyze the image. Please try again."


class ClassificationBusy(ClassificationError):
    default_message = "An analysis is already in progress."


class ChannelUnavailable(HazardError):
    default_message = "Could not reach the alert network. Alerts on this device still work locally."
