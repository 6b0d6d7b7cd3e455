# chat/responder.py - LangGraph conversation with per-identity memory
import operator
import os
import time
from typing import TypedDict, Annotated, List, Optional

from langchain_core.messages import HumanMessage, AIMessage
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder
from langchain_core.runnables import Runnable
from langchain_openai import ChatOpenAI
from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import StateGraph, START, END

from config import DEFAULT_CHAT_MODEL, MAX_CHAT_HISTORY_MESSAGES
from utils.logger import get_llm_logger

logger = get_llm_logger()

SYSTEM_PROMPT = """You are a knowledgeable, respectful assistant for conversations about theology and faith.
Answer thoughtfully, acknowledge differing traditions, and keep answers concise."""


class ConversationState(TypedDict):
    """State for the conversation graph."""
    question: str
    chat_history: Annotated[List, operator.add]  # Accumulates messages
    answer: str


def _thread_config(thread_id: str) -> dict:
    return {"configurable": {"thread_id": thread_id}}


class ChatResponder:
    """
    Answers chat messages, remembering history per thread.

    thread_id is the caller identity (anonymous session id or user id).
    Without an explicit model, ChatOpenAI is created on the first answer so
    the app starts without an API key.
    """

    def __init__(
        self,
        model: Optional[Runnable] = None,
        model_name: Optional[str] = None,
        max_history: int = MAX_CHAT_HISTORY_MESSAGES,
    ):
        self.model_name = model_name or os.getenv("OPENAI_MODEL", DEFAULT_CHAT_MODEL)
        self.max_history = max_history
        self._model = model
        self._chain = None
        self._memory = MemorySaver()
        self._app = self._build_graph()

    def _get_chain(self):
        if self._chain is None:
            if self._model is None:
                logger.info(f"Creating chat model {self.model_name}...")
                self._model = ChatOpenAI(model=self.model_name, temperature=0)
            prompt = ChatPromptTemplate.from_messages([
                ("system", SYSTEM_PROMPT),
                MessagesPlaceholder(variable_name="chat_history"),
                ("human", "{question}")
            ])
            self._chain = prompt | self._model | StrOutputParser()
        return self._chain

    def _build_graph(self):
        def generate_answer(state: ConversationState) -> dict:
            """Generate answer using the trimmed chat history."""
            question = state["question"]
            chat_history = state.get("chat_history", [])
            trimmed_history = chat_history[-self.max_history:]

            answer = self._get_chain().invoke({
                "chat_history": trimmed_history,
                "question": question
            })

            return {
                "answer": answer,
                "chat_history": [HumanMessage(content=question), AIMessage(content=answer)]
            }

        graph = StateGraph(ConversationState)
        graph.add_node("generate", generate_answer)
        graph.add_edge(START, "generate")
        graph.add_edge("generate", END)
        return graph.compile(checkpointer=self._memory)

    def respond(self, thread_id: str, message: str) -> str:
        start_time = time.time()
        result = self._app.invoke(
            {"question": message, "chat_history": [], "answer": ""},
            config=_thread_config(thread_id),
        )
        elapsed = time.time() - start_time
        logger.info(f"[{thread_id}] Answer generated in {elapsed:.2f}s")
        return result["answer"]

    def get_history(self, thread_id: str) -> list:
        """Full stored history of a thread (empty for unknown threads)."""
        snapshot = self._app.get_state(_thread_config(thread_id))
        return list(snapshot.values.get("chat_history", []))

    def migrate(self, from_thread: str, to_thread: str) -> int:
        """
        Move a conversation to another thread (anonymous session -> user account).

        History is appended after anything to_thread already holds, then the
        source thread is deleted.

        Returns:
            Number of messages moved
        """
        history = self.get_history(from_thread)
        if history:
            self._app.update_state(
                _thread_config(to_thread),
                {"chat_history": history},
                as_node="generate",
            )
        self._memory.delete_thread(from_thread)
        logger.info(f"[{from_thread}] Moved {len(history)} messages to {to_thread}")
        return len(history)

    def reset(self, thread_id: str) -> None:
        """Drop the conversation memory of a thread."""
        self._memory.delete_thread(thread_id)
        logger.info(f"[{thread_id}] Conversation memory cleared")
