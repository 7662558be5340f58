"""Crypto Mail Agent - a custodial crypto wallet you drive with plain-English e-mails."""

__version__ = "0.1.0"
