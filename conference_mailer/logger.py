"""Logging helpers for the conference mailer."""

import logging


def get_logger(name: str = "ConferenceMailer") -> logging.Logger:
    """Return the named :class:`logging.Logger` instance.

    Handlers and levels are configured once via ``logging.basicConfig()`` in
    ``main.py``; this helper never attaches handlers of its own.
    """
    return logging.getLogger(name)
