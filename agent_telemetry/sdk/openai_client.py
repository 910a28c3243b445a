"""
Tracked OpenAI client wrapper.

Runs chat completions as tracked agent operations without modifying
their behavior.
"""

from typing import Any, Dict, List, Optional

from openai import OpenAI

from ..core.token_counter import TokenUsage
from ..service import AgentTelemetryService


def _response_tokens(response: Any) -> int:
    return TokenUsage.from_response(response).total_tokens


class TrackedOpenAI:
    """OpenAI client wrapper that records one operation metric per call.

    Token usage reported by the API is priced with the service's cost
    model and charged to the agent's budget. API errors are recorded as
    failed operations and then propagated unchanged.
    """

    def __init__(
        self,
        model: str,
        agent_id: str,
        service: AgentTelemetryService,
        operation: str = "chat_completion",
        client: Optional[OpenAI] = None,
    ):
        """Initialize tracked OpenAI client.

        Args:
            model: OpenAI model name (required)
            agent_id: Agent charged for the calls (required)
            service: Telemetry service that records the calls
            operation: Operation name recorded for each call
            client: Preconfigured OpenAI client (a default one if None)

        Raises:
            ValueError: If model or agent_id is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if not agent_id or not agent_id.strip():
            raise ValueError("agent_id is required and cannot be empty")

        self.model = model
        self.agent_id = agent_id
        self.operation = operation
        self.service = service
        self.client = client or OpenAI()

    def can_execute(self) -> bool:
        """Whether the agent is still within its budget."""
        return self.service.can_execute(self.agent_id)

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        page_id: Optional[str] = None,
        **kwargs: Any
    ) -> Any:
        """Create chat completion with telemetry.

        Args:
            messages: List of message dictionaries (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            page_id: Correlation id recorded on the metric (optional)
            **kwargs: Additional OpenAI parameters

        Returns:
            OpenAI chat completion response, unchanged

        Raises:
            ValueError: If messages is empty
            OpenAI API errors: Propagated without modification
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        return self.service.track_operation(
            self.agent_id,
            self.operation,
            lambda: self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs
            ),
            page_id=page_id,
            tokens_from_result=_response_tokens,
        )
