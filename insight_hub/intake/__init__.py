"""Intake paths feeding the store: push notifications and listing polls."""

from .poll import ChannelPollResult, PollIntake, PollReport
from .push import PushIntake, PushReport

__all__ = ["ChannelPollResult", "PollIntake", "PollReport", "PushIntake", "PushReport"]
