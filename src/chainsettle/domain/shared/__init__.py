"""Shared domain utilities.

This package is domain-accessible and should not depend on application code.
"""

from .chain_client_protocol import ChainClientProtocol
from .notifier_protocol import NotifierProtocol

__all__ = ["ChainClientProtocol", "NotifierProtocol"]
