from __future__ import annotations

from pydantic import TypeAdapter

from groundsearch.config import settings
from groundsearch.models.records import Evidence
from groundsearch.services.gateway import ReasoningGateway, gateway as default_gateway
from groundsearch.services.prompt_store import render_prompt

CLAIM_TEXT_LIMIT = 30000

_claims_adapter: TypeAdapter[list[Evidence]] = TypeAdapter(list[Evidence])


async def extract_claims(
    model: str,
    text: str,
    source_url: str,
    *,
    gateway: ReasoningGateway | None = None,
    system: str = "",
) -> list[Evidence]:
    """Ask the model for testable claims in ``text``, each shaped as Evidence."""
    prompt = render_prompt("claims.user", source_url=source_url, text=text[:CLAIM_TEXT_LIMIT])
    response = await (gateway or default_gateway()).call(
        model,
        [{"role": "user", "content": prompt}],
        system=system,
        json_mode=True,
        schema=_claims_adapter,
        timeout=settings.timeout_extract_s,
        caller="extract_claims",
    )
    claims: list[Evidence] = response.value
    for claim in claims:
        if not claim.url:
            claim.url = source_url
    return claims
