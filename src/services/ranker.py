"""LLM-backed ranking of candidate schedule windows."""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from core.config import get_settings
from core.exceptions import LLMError
from core.logging_config import get_logger
from llm.client import LLMClient, get_llm_client

LOGGER = get_logger(__name__)

RANKER_SYSTEM_PROMPT = (
    "You plan routes for an exterior cleaning crew. Given a new job address, "
    "its duration and the crew's upcoming jobs with distances, propose up to "
    "three start times that keep driving short. Reply with a JSON array of "
    'objects: {"window": str, "reasoning": str, "start_at": ISO-8601 UTC}.'
)


class LLMWindowRanker:
    """
    Ask the LLM for up to three schedule windows.

    ``rank_windows`` returns None whenever the feature is disabled, the
    provider fails, or the reply is not a JSON list. It never raises.
    """

    def __init__(self, client: Optional[LLMClient] = None, enabled: Optional[bool] = None):
        self._client = client
        self.enabled = get_settings().is_ai_ranker_enabled() if enabled is None else enabled

    @property
    def client(self) -> LLMClient:
        if self._client is None:
            self._client = get_llm_client()
        return self._client

    def rank_windows(
        self,
        target_address: Dict[str, Any],
        duration_minutes: int,
        candidates: List[Dict[str, Any]],
    ) -> Optional[List[Dict[str, Any]]]:
        if not self.enabled or not self.client.is_available():
            return None

        prompt = json.dumps(
            {
                "target_address": target_address,
                "duration_minutes": duration_minutes,
                "upcoming": candidates,
            },
            default=str,
        )
        try:
            result = self.client.generate_json(prompt, system_prompt=RANKER_SYSTEM_PROMPT)
        except LLMError as e:
            LOGGER.warning(f"Window ranking failed: {e}")
            return None

        if isinstance(result, dict):
            result = result.get("suggestions")
        if not isinstance(result, list):
            return None
        return [item for item in result if isinstance(item, dict)][:3]
