import json
from typing import Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from app.settings import settings
from domain.errors import ScorerError
from domain.schemas import MatchScore
from infra.llm.prompts import MATCH_PROMPT, MATCH_SYSTEM_PROMPT

T = TypeVar("T", bound=BaseModel)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
OPENROUTER_CHAT_URL = "https://openrouter.ai/api/v1/chat/completions"


def _or_default(value, default: str = "Not specified") -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    return str(value)


def build_match_messages(candidate, job_posting) -> List[Dict[str, str]]:
    content = MATCH_PROMPT.format(
        candidate_name=_or_default(getattr(candidate, "name", None)),
        candidate_skills=_or_default(getattr(candidate, "skills", None)),
        candidate_years=getattr(candidate, "years_of_experience", None) or 0,
        candidate_education=_or_default(getattr(candidate, "education", None)),
        job_title=_or_default(getattr(job_posting, "title", None)),
        job_description=_or_default(getattr(job_posting, "description", None))[:5000],
        job_required_skills=_or_default(getattr(job_posting, "required_skills", None)),
        job_experience_required=getattr(job_posting, "experience_required", None) or 0,
    )
    return [
        {"role": "system", "content": MATCH_SYSTEM_PROMPT},
        {"role": "user", "content": content},
    ]


def _validate_llm_response(raw_text: str, model: Type[T]) -> T:
    try:
        return model.model_validate_json(raw_text)
    except ValidationError as exc:
        # pydantic reports invalid JSON as a ValidationError too
        raise ScorerError(f"LLM response failed validation: {exc}") from exc


class LLMScorer:
    """Scores a (candidate, job posting) pair with a chat-completions model.

    One attempt per pair with a bounded timeout; retrying would duplicate
    attempts against the same pair.
    """

    def __init__(
        self,
        *,
        openai_api_key: Optional[str] = None,
        openai_model: Optional[str] = None,
        openrouter_api_key: Optional[str] = None,
        openrouter_model: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.openai_api_key = openai_api_key if openai_api_key is not None else settings.OPENAI_API_KEY
        self.openai_model = openai_model or settings.OPENAI_MODEL
        self.openrouter_api_key = (
            openrouter_api_key if openrouter_api_key is not None else settings.OPENROUTER_API_KEY)
        self.openrouter_model = openrouter_model or settings.OPENROUTER_MODEL
        self.timeout = timeout if timeout is not None else settings.SCORER_TIMEOUT_S
        self._http_client = http_client

    def _provider(self):
        if self.openai_api_key:
            return OPENAI_CHAT_URL, {"Authorization": f"Bearer {self.openai_api_key}"}, self.openai_model
        if self.openrouter_api_key:
            headers = {
                "Authorization": f"Bearer {self.openrouter_api_key}",
                "HTTP-Referer": "http://localhost",
                "X-Title": settings.APP_NAME,
            }
            return OPENROUTER_CHAT_URL, headers, self.openrouter_model
        raise ScorerError("No LLM provider configured")

    async def _post_json(self, url: str, headers: Dict[str, str], payload: Dict) -> Dict:
        if self._http_client is not None:
            response = await self._http_client.post(url, headers=headers, json=payload, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, headers=headers, json=payload)
        response.raise_for_status()
        return response.json()

    async def __call__(self, candidate, job_posting) -> MatchScore:
        url, headers, model = self._provider()
        payload = {
            "model": model,
            "temperature": 0.2,
            "response_format": {"type": "json_object"},
            "messages": build_match_messages(candidate, job_posting),
        }
        data = await self._post_json(url, headers, payload)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ScorerError(f"Malformed completion payload: {json.dumps(data)[:200]}") from exc
        if not content:
            raise ScorerError("No response from AI matching engine")
        return _validate_llm_response(content, MatchScore)
