"""Remote archive listing sources.

A listing source produces a finite sequence of
:class:`~MjlogKit.Harvest.types.RemoteEntry` in no particular order. The HTTP
implementation scrapes ``file:'<name>',size:<n>`` pairs out of the listing
page with a configurable pattern; anything else on the page is ignored.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Protocol, Sequence, Union

import httpx
from tenacity import Retrying

from .net.download import fetch_text
from .types import RemoteEntry

LOGGER = logging.getLogger(__name__)


class ListingSource(Protocol):
    """Anything that can enumerate the remote archive listing."""

    def entries(self) -> Sequence[RemoteEntry]:
        ...


def parse_listing(text: str, pattern: Union[str, re.Pattern[str]]) -> List[RemoteEntry]:
    """Extract ``RemoteEntry`` values from ``text``.

    ``pattern`` must capture the entry name in group 1 and its size in group 2.
    Matches with an empty name or a non-integer size are dropped. When a name
    repeats, the last declared size wins.
    """
    regex = re.compile(pattern) if isinstance(pattern, str) else pattern
    found: dict[str, RemoteEntry] = {}
    for match in regex.finditer(text):
        name, size = match.group(1), match.group(2)
        try:
            found[name] = RemoteEntry(name=name, declared_size=int(size))
        except ValueError:
            LOGGER.debug("Ignoring malformed listing entry %r", match.group(0))
    return list(found.values())


class StaticListingSource:
    """Listing backed by an in-memory sequence."""

    def __init__(self, entries: Sequence[RemoteEntry]) -> None:
        self._entries = list(entries)

    def entries(self) -> Sequence[RemoteEntry]:
        return list(self._entries)


class HttpListingSource:
    """Listing fetched from the remote site and parsed with ``pattern``."""

    def __init__(
        self,
        client: httpx.Client,
        url: str,
        pattern: Union[str, re.Pattern[str]],
        *,
        retrying: Optional[Retrying] = None,
    ) -> None:
        self._client = client
        self._url = url
        self._pattern = pattern
        self._retrying = retrying

    def entries(self) -> Sequence[RemoteEntry]:
        text = fetch_text(self._client, self._url, retrying=self._retrying)
        entries = parse_listing(text, self._pattern)
        LOGGER.info("Listing %s returned %d entries", self._url, len(entries))
        return entries
