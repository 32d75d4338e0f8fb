# feedback_intel/agents/llm_agent.py
from openai import OpenAI, OpenAIError, RateLimitError
from typing import List, Optional
from feedback_intel.config.settings import Settings
from feedback_intel.errors import UpstreamFailure
import time
import logging

logger = logging.getLogger(__name__)


CLASSIFIER_SYSTEM_PROMPT = """You are a Product Feedback AI. Analyze this feedback and return JSON with:

{
  "sentiment_score": Integer (1-10). 10 is thrilled, 1 is angry.
  "nps_class": "Promoter" (9-10), "Passive" (7-8), "Detractor" (0-6).
  "urgency_level": "High" | "Neutral" | "Low"
  "user_type": "Enterprise" | "SMB" | "Individual" | "Unknown"
  "product_category": Infer from text (e.g., "Workers", "Pages", "R2", "D1", "Zero Trust", "Unknown")
  "feedback_type": "UX" | "Tech" | "Service" | "Feature Request"
  "summary": Max 20 words
  "recommended_action": Short actionable step
}

Return ONLY valid JSON, no additional text."""


class ChatAgent:
    """OpenAI Chatbot client."""

    def __init__(self, config: Settings):
        self.config = config
        self.client = OpenAI(
            api_key=config.openai_api_key,
            timeout=config.request_timeout_seconds
        )
        self.model = config.openai_llm_model

    def chat(self, messages: List[dict]) -> str:
        """
        Send a list of messages to the OpenAI chat model and get the response.
        Uses exponential backoff retry logic for rate limit errors.

        Args:
            messages: List of message dicts (e.g., [{"role": "user", "content": "Hello"}])

        Returns:
            The assistant's reply as a string.
        """
        max_retries = 5
        base_delay = 1.0  # Start with 1 second delay

        for attempt in range(max_retries):
            try:
                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=messages
                )
                return response.choices[0].message.content or ""
            except RateLimitError:
                if attempt == max_retries - 1:
                    raise

                delay = base_delay * (2 ** attempt)
                logger.warning(f"Rate limit hit on chat completion. Retrying in {delay}s... (attempt {attempt + 1}/{max_retries})")
                time.sleep(delay)

    def chat_single(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """
        Send a single prompt to the OpenAI chat model and get the response.

        Args:
            prompt: The user's prompt as a string.
            system_prompt: Optional system instruction sent before the prompt.

        Returns:
            The assistant's reply as a string.
        """
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return self.chat(messages)


class FeedbackClassifier:
    """Ask the chat model for a structured classification of one feedback item."""

    def __init__(self, config: Settings):
        self.agent = ChatAgent(config)
        self.system_prompt = CLASSIFIER_SYSTEM_PROMPT

    def classify(self, feedback_text: str) -> str:
        """
        Classify feedback text.

        The reply is returned untouched; it is untrusted and must go through
        the normalizer before use.

        Raises:
            UpstreamFailure: the model could not be reached or returned an error
        """
        try:
            return self.agent.chat_single(
                f"Analyze this feedback: {feedback_text}",
                system_prompt=self.system_prompt
            )
        except OpenAIError as e:
            raise UpstreamFailure("Classifier request failed", details=str(e)) from e
