"""Answer generation from retrieved chunks."""

import logging
import re
from abc import ABC, abstractmethod
from typing import Optional

from companyrag.rag.document import SearchResult

logger = logging.getLogger(__name__)

NO_ANSWER = "I couldn't find any relevant information in the document to answer your question."

ANSWER_PROMPT = """Answer the question using only the context below. If the context does not contain the answer, say so.

When you use information from the context, cite it with its source reference (e.g. [SOURCE_0], [SOURCE_1]) at the end of the sentence that uses it.

Context:
{context}

Question: {question}

Answer:"""


def format_context(results: list[SearchResult]) -> str:
    """Number retrieved chunks as [SOURCE_i] blocks."""
    return "\n\n".join(f"[SOURCE_{i}] {result.chunk.content}" for i, result in enumerate(results))


class BaseAnswerGenerator(ABC):
    """Turns a question and its retrieved chunks into an answer."""

    @abstractmethod
    async def generate(self, question: str, results: list[SearchResult]) -> str:
        pass


class ExtractiveAnswerGenerator(BaseAnswerGenerator):
    """Answers with the sentences of the retrieved chunks that best overlap the question.

    Needs no model; useful offline and in tests.
    """

    _SENTENCE_END = re.compile(r"(?<=[.!?])\s+")
    _WORD = re.compile(r"\w+")

    def __init__(self, max_sentences: int = 3):
        self.max_sentences = max_sentences

    async def generate(self, question: str, results: list[SearchResult]) -> str:
        if not results:
            return NO_ANSWER

        terms = {w.lower() for w in self._WORD.findall(question) if len(w) > 2}
        scored = []
        for i, result in enumerate(results):
            for sentence in self._SENTENCE_END.split(result.chunk.content):
                sentence = sentence.strip()
                if not sentence:
                    continue
                words = {w.lower() for w in self._WORD.findall(sentence)}
                overlap = len(terms & words)
                if overlap:
                    scored.append((overlap, result.score, f"{sentence} [SOURCE_{i}]"))

        if not scored:
            return NO_ANSWER
        scored.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return " ".join(text for _, _, text in scored[:self.max_sentences])


class OpenAIAnswerGenerator(BaseAnswerGenerator):
    """Chat-completion answers grounded in the retrieved context."""

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_tokens: int = 1000,
    ):
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.max_tokens = max_tokens
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                raise ImportError(
                    "openai package not installed. "
                    "Install with: pip install openai"
                )
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    async def generate(self, question: str, results: list[SearchResult]) -> str:
        if not results:
            return NO_ANSWER

        prompt = ANSWER_PROMPT.format(context=format_context(results), question=question)
        client = self._get_client()
        response = await client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=0,
            max_tokens=self.max_tokens,
        )
        content = response.choices[0].message.content
        logger.debug(f"Generated answer with {self.model} from {len(results)} chunks")
        return content or NO_ANSWER
