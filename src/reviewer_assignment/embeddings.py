from __future__ import annotations

from typing import Protocol, Sequence

import httpx
import numpy as np
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .models import Skill


class Embedder(Protocol):
    def embed(self, text: str) -> Sequence[float]: ...


class EmbeddingError(RuntimeError):
    pass


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0 when either has zero magnitude."""
    left = np.asarray(a, dtype=float)
    right = np.asarray(b, dtype=float)
    if left.shape != right.shape:
        raise ValueError(f"Vector sizes differ: {left.shape} vs {right.shape}")
    norm = np.linalg.norm(left) * np.linalg.norm(right)
    if norm == 0:
        return 0.0
    return float(np.dot(left, right) / norm)


def skill_text(skills: Sequence[Skill]) -> str:
    return ", ".join(f"{skill.tag} ({skill.level.value})" for skill in skills)


class HttpEmbedder:
    """Client for a Gemini-style ``models/{model}:embedContent`` endpoint."""

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        model: str = "gemini-embedding-001",
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.client = client or httpx.Client(base_url=base_url, timeout=timeout)

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=0.5, max=4),
        reraise=True,
    )
    def _post(self, body: dict) -> httpx.Response:
        return self.client.post(
            f"models/{self.model}:embedContent",
            params={"key": self.api_key},
            json=body,
        )

    def embed(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise ValueError("Input text cannot be empty.")
        if not self.api_key:
            raise EmbeddingError("EMBEDDING_API_KEY is not configured.")
        body = {
            "model": f"models/{self.model}",
            "content": {"parts": [{"text": text}]},
        }
        response = self._post(body)
        if response.status_code != 200:
            raise EmbeddingError(f"Embedding API error: {response.status_code} {response.text}")
        try:
            values = response.json()["embedding"]["values"]
        except (ValueError, KeyError, TypeError) as exc:
            raise EmbeddingError(f"Unexpected embedding response: {response.text}") from exc
        if not values:
            raise EmbeddingError("Embedding API returned an empty vector.")
        return [float(value) for value in values]

    def close(self) -> None:
        self.client.close()
