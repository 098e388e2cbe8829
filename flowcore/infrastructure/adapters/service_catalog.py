"""In-memory service catalog."""

import re
from collections.abc import Iterable

from flowcore.domain.interfaces.collaborators import ServiceCatalog
from flowcore.domain.models.service_offering import ServiceOffering

_WORD = re.compile(r"[a-z0-9]+")
_STOPWORDS = frozenset(
    {"a", "an", "the", "for", "and", "of", "to", "my", "i", "need", "help", "service"}
)


def _tokens(text: str | None) -> set[str]:
    return {w for w in _WORD.findall((text or "").lower()) if w not in _STOPWORDS}


class InMemoryServiceCatalog(ServiceCatalog):
    """ServiceCatalog over a fixed list of offerings.

    Matching is token overlap between the request and each offering's name
    and keywords. An offering restricted to some platforms only matches
    when the requested platform is one of them.
    """

    def __init__(self, offerings: Iterable[ServiceOffering] = ()) -> None:
        self._offerings = list(offerings)

    def add(self, offering: ServiceOffering) -> None:
        self._offerings.append(offering)

    async def find_match(self, text: str, platform: str | None = None) -> ServiceOffering | None:
        wanted = _tokens(text)
        if not wanted:
            return None
        platform_key = (platform or "").strip().lower()

        best: ServiceOffering | None = None
        best_score = 0
        for offering in self._offerings:
            if not offering.active:
                continue
            platforms = {p.lower() for p in offering.platforms}
            if platforms and platform_key and platform_key not in platforms:
                continue
            vocabulary = _tokens(offering.name)
            for keyword in offering.keywords:
                vocabulary |= _tokens(keyword)
            score = len(wanted & vocabulary)
            if score > best_score:
                best, best_score = offering, score
        return best

    async def list_active(self, limit: int = 10) -> list[ServiceOffering]:
        return [o for o in self._offerings if o.active][: max(limit, 0)]
