"""HTTP transports for model routes that speak plain JSON over HTTP.

Covers OpenAI-compatible chat-completions endpoints (io.net, groq) and a
local Ollama server. Both retry transient failures (connection errors,
timeouts, 429 and 5xx) with exponential backoff and raise ``ValueError``
or ``ConnectionError`` once retries are exhausted.
"""

import time
from typing import Any

import requests


def _post_with_retry(
    endpoint: str,
    payload: dict[str, Any],
    *,
    headers: dict[str, str] | None,
    timeout: int,
    max_retries: int,
    label: str,
) -> dict[str, Any]:
    last_error: Exception | None = None
    for attempt in range(max_retries + 1):
        wait_time = 0.5 * (2 ** attempt)
        try:
            response = requests.post(endpoint, json=payload, headers=headers, timeout=timeout)
            response.raise_for_status()
            return response.json()

        except requests.exceptions.ConnectionError as e:
            last_error = e
            if attempt < max_retries:
                time.sleep(wait_time)
                continue
            raise ConnectionError(f"Cannot connect to {label} at {endpoint}") from e

        except requests.exceptions.Timeout as e:
            last_error = e
            if attempt < max_retries:
                time.sleep(wait_time)
                continue
            raise ValueError(f"{label} request timed out after {timeout}s") from e

        except requests.exceptions.HTTPError as e:
            last_error = e
            status = e.response.status_code if e.response is not None else 0
            # Throttling and 5xx errors are transient
            if (status == 429 or 500 <= status < 600) and attempt < max_retries:
                time.sleep(wait_time)
                continue
            body = e.response.text[:500] if e.response is not None else ""
            raise ValueError(f"{label} API error ({status}): {body}") from e

        except ValueError as e:
            raise ValueError(f"{label} returned invalid JSON") from e

    raise ValueError(f"{label} failed after {max_retries} retries. Last error: {last_error}")


def openai_compatible_chat(
    messages: list[dict[str, str]],
    *,
    endpoint: str,
    api_key: str,
    model: str,
    temperature: float | None = None,
    max_tokens: int | None = None,
    timeout: int = 120,
    max_retries: int = 2,
) -> str:
    """Call an OpenAI-compatible ``/chat/completions`` endpoint.

    Args:
        messages: List of message dicts with 'role' and 'content'
        endpoint: Full chat-completions URL
        api_key: Bearer token for the endpoint
        model: Model name understood by the endpoint
        temperature: Sampling temperature (omitted when None)
        max_tokens: Output token limit (omitted when None)
        timeout: Request timeout in seconds
        max_retries: Retries on transient failures

    Returns:
        Response text content

    Raises:
        ValueError: If the call fails after retries or the response has no content
        ConnectionError: If the endpoint cannot be reached
    """
    payload: dict[str, Any] = {"model": model, "messages": messages}
    if temperature is not None:
        payload["temperature"] = temperature
    if max_tokens is not None:
        payload["max_tokens"] = max_tokens

    result = _post_with_retry(
        endpoint,
        payload,
        headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        timeout=timeout,
        max_retries=max_retries,
        label=model,
    )
    try:
        return result["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError) as e:
        raise ValueError(f"Unexpected chat-completions response format: {str(result)[:300]}") from e


def ollama_chat(
    messages: list[dict[str, str]],
    *,
    endpoint: str,
    model: str,
    temperature: float | None = 0.0,
    max_tokens: int | None = None,
    timeout: int = 120,
    max_retries: int = 2,
    num_ctx: int = 8192,
) -> str:
    """Call a local Ollama ``/api/chat`` endpoint.

    ``num_ctx`` must hold the capability catalog prompt plus the response;
    Ollama's default context silently truncates it.
    """
    options: dict[str, Any] = {"num_ctx": num_ctx}
    if temperature is not None:
        options["temperature"] = temperature
    if max_tokens is not None:
        # Ollama calls it num_predict
        options["num_predict"] = max_tokens

    result = _post_with_retry(
        endpoint,
        {"model": model, "messages": messages, "stream": False, "options": options},
        headers=None,
        timeout=timeout,
        max_retries=max_retries,
        label="Ollama",
    )
    if "message" not in result or "content" not in result["message"]:
        raise ValueError(f"Unexpected Ollama response format: {str(result)[:300]}")
    return result["message"]["content"]
