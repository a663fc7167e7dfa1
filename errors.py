#!/usr/bin/env python3
"""
Error taxonomy for the VK comment crawler.
"""

from typing import Optional


class CrawlerError(Exception):
    pass


class ConfigurationError(CrawlerError):
    pass


class PersistenceError(CrawlerError):
    pass


class TransientTransportError(CrawlerError):
    pass


class RemoteApiError(CrawlerError):
    def __init__(self, code: Optional[int], message: str):
        super().__init__(f"VK API error {code}: {message}")
        self.code = code
        self.message = message


class RemoteRateLimitError(RemoteApiError):
    pass


class RemoteFatalError(RemoteApiError):
    pass


class LedgerClosedError(CrawlerError):
    pass
