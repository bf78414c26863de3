"""AgentBackend abstract base class.

Defines the interface every agent framework integration must implement. The
run controller and the web route depend only on this interface — never on a
concrete backend. Swapping OpenRouter for a scripted demo (or any other
framework) means writing a new class that satisfies this interface, with
zero changes to the bridge or the transports.
"""

from abc import ABC, abstractmethod

from llm.stream import ProviderStream


class AgentBackend(ABC):
    """Abstract base class for agent framework integrations.

    A backend owns everything about reasoning: model selection, tool
    dispatch, multi-step planning, and conversation memory. It exposes one
    streaming invocation whose raw output the event bridge translates.

    To add a new backend, subclass AgentBackend and implement stream().
    """

    @abstractmethod
    async def stream(
        self,
        query: str,
        *,
        thread: str,
        resource: str,
        max_steps: int,
    ) -> ProviderStream:
        """Start one agent invocation and return its provider stream.

        Args:
            query: The operator's question for this run.
            thread: Conversation thread id. Stable across runs in the same
                session so the backend can keep multi-turn memory.
            resource: Owner id for memory that outlives a thread (e.g. the
                working-memory note for a user).
            max_steps: Upper bound on agent steps for this invocation.

        Returns:
            A ProviderStream whose full_stream yields raw chunks and whose
            text, usage, and steps resolve once the invocation finishes.

        Raises:
            NotImplementedError: If a subclass does not implement this method.
        """
        ...
