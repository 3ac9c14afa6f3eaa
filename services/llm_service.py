# services/llm_service.py
import requests
import logging
from typing import Dict, Any, List, Optional

from config import settings

logger = logging.getLogger(settings.LOGGER_NAME)

class LLMService:
    """A service to interact with a local LLM chat API (e.g., Ollama)."""

    def __init__(self, base_url: str, model: str, timeout: int = settings.REQUEST_TIMEOUT):
        """
        Initializes the LLMService.

        Args:
            base_url: The base URL of the LLM API.
            model: The name of the model to use.
            timeout: The request timeout in seconds.
        """
        self.base_url = base_url.rstrip('/')
        self.model = model
        self.timeout = timeout

    def chat(self, messages: List[Dict[str, Any]],
             tools: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        """
        Sends a chat history (and optional tool definitions) to the LLM.

        Returns {"status": "success", "message": {...}} where message may hold
        "content" and/or "tool_calls", or {"status": "error", "error": ...}.
        """
        if not messages:
            logger.warning("LLM chat called without messages.")
            return {"error": "No messages provided", "status": "error"}

        payload: Dict[str, Any] = {
            'model': self.model,
            'messages': messages,
            'stream': False
        }
        if tools:
            payload['tools'] = tools

        try:
            logger.info(f"Sending {len(messages)} messages to LLM model '{self.model}'...")
            response = requests.post(
                f'{self.base_url}/api/chat',
                json=payload,
                timeout=self.timeout
            )

            response.raise_for_status()  # Raises an HTTPError for bad responses (4xx or 5xx)

            message = response.json().get('message') or {}
            if message.get('content') or message.get('tool_calls'):
                logger.info("Successfully received response from LLM.")
                return {"message": message, "status": "success"}
            else:
                logger.error("LLM response was empty or malformed.")
                return {"error": "Empty response from LLM", "status": "error"}

        except requests.exceptions.Timeout:
            logger.error(f"LLM request timed out after {self.timeout} seconds.")
            return {"error": "LLM request timed out", "status": "error"}
        except requests.exceptions.ConnectionError:
            logger.error(f"Cannot connect to LLM at {self.base_url}. Is the service running?")
            return {"error": "Cannot connect to LLM service", "status": "error"}
        except requests.exceptions.HTTPError as e:
            logger.error(f"LLM service returned an error: {e.response.status_code} {e.response.text}")
            return {"error": f"LLM error: {e.response.status_code}", "status": "error"}
        except ValueError as e:
            logger.error(f"LLM returned invalid JSON: {e}")
            return {"error": "Invalid response from LLM", "status": "error"}
