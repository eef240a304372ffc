"""
Generative fallback provider.

Asks a chat model for notable places near a point. It is always the last
tier of the cascade and has no probe endpoint, so the health monitor
scores it from real usage.
"""

import json
import logging
from typing import Any, List, Optional

from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI

from ...core.constants import PROVIDER_AI_FALLBACK
from ...core.exceptions import ProviderResponseError, ProviderTransientError, provider_error_for_status
from ...schemas.places import RawPlaceRecord
from ..geo import haversine_m
from .base import PlaceProvider

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = (
    "You list real, well-known points of interest. Answer with JSON only: "
    '{"places": [{"name": str, "category": str, "address": str, "lat": float, '
    '"lon": float, "description": str}]}. Never invent places you are unsure about.'
)


class AIFallbackProvider(PlaceProvider):
    name = PROVIDER_AI_FALLBACK
    supports_probe = False

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o-mini",
        timeout_s: float = 15.0,
        max_places: int = 15,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        super().__init__(None)
        self.api_key = api_key
        self.model = model
        self.timeout_s = timeout_s
        self.max_places = max_places
        self._openai = client

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) or self._openai is not None

    @property
    def openai(self) -> AsyncOpenAI:
        if self._openai is None:
            self._openai = AsyncOpenAI(
                api_key=self.require_credential(self.api_key, "OPENAI_API_KEY"),
                timeout=self.timeout_s,
                max_retries=0,
            )
        return self._openai

    async def fetch(
        self,
        lat: float,
        lon: float,
        radius_m: float,
        category_hint: Optional[str] = None,
        location_name: Optional[str] = None,
    ) -> List[RawPlaceRecord]:
        where = f"{location_name} ({lat:.5f}, {lon:.5f})" if location_name else f"({lat:.5f}, {lon:.5f})"
        kind = f"{category_hint} places" if category_hint else "points of interest"
        prompt = (
            f"List up to {self.max_places} {kind} within {int(radius_m)} meters of {where}."
        )
        try:
            response = await self.openai.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": _SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                response_format={"type": "json_object"},
                temperature=0.2,
            )
        except (APITimeoutError, APIConnectionError) as exc:
            raise ProviderTransientError(self.name, str(exc)) from exc
        except APIStatusError as exc:
            raise provider_error_for_status(self.name, exc.status_code, str(exc)) from exc

        content = response.choices[0].message.content or "{}"
        try:
            payload: Any = json.loads(content)
        except json.JSONDecodeError as exc:
            raise ProviderResponseError(self.name, "model answer is not JSON") from exc

        if not isinstance(payload, dict):
            raise ProviderResponseError(self.name, "model answer is not a JSON object")
        items = payload.get("places") or []
        if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
            raise ProviderResponseError(self.name, "model answer has no list of place objects")

        places: List[RawPlaceRecord] = []
        for item in items:
            record = self.build_record(
                name=item.get("name"),
                lat=item.get("lat"),
                lon=item.get("lon"),
                category=item.get("category") or "attraction",
                address=item.get("address") or "",
                description=item.get("description"),
                tags=["generated"],
            )
            if record is None:
                continue
            if haversine_m(lat, lon, record.coordinates.lat, record.coordinates.lon) > radius_m:
                continue
            places.append(record)
        logger.info(f"Generative fallback produced {len(places)} places inside the radius")
        return places[: self.max_places]
