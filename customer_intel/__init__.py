"""Customer Intelligence: behavioural tracking, customer scoring and marketing automation."""

__version__ = "0.1.0"
