"""Replicate predictions API client for portrait generation.

Runs a model through the HTTP predictions API with ``httpx``: the prediction
is created with ``Prefer: wait`` and polled until it reaches a terminal
status.  The model's ``output`` is decoded by :func:`decode_output`, which
accepts exactly the documented output shapes for image models.
"""

import logging
import re
import time
from typing import Any

import httpx

from concerto.exceptions import InferenceError, UnrecognizedOutputError
from concerto.settings import get_config

logger = logging.getLogger(__name__)

MODEL_PATTERN = re.compile(r"^(?P<owner>[^/\s:]+)/(?P<name>[^/\s:]+)(?::(?P<version>[^/\s:]+))?$")
TERMINAL_STATUSES = frozenset({"succeeded", "failed", "canceled"})
URL_PREFIXES = ("https://", "http://", "data:")
USER_AGENT = "concerto-portraits/1.0"


def _is_url(value: object) -> bool:
    return isinstance(value, str) and value.strip().startswith(URL_PREFIXES)


def decode_output(output: object) -> str:
    """Extract the generated image URL from a prediction ``output``.

    Recognised shapes:

    * a URL string (``"https://..."`` or a ``data:`` URL);
    * a non-empty list whose first item is a URL string;
    * an object with a ``url`` string.

    Args:
        output: The ``output`` field of a succeeded prediction.

    Returns:
        The image URL.

    Raises:
        UnrecognizedOutputError: For any other shape.
    """
    if isinstance(output, str):
        if _is_url(output):
            return output.strip()
    elif isinstance(output, list):
        if output and _is_url(output[0]):
            return output[0].strip()
    elif isinstance(output, dict):
        url = output.get("url")
        if _is_url(url):
            return url.strip()
    logger.warning("Unrecognized inference output of type %s", type(output).__name__)
    raise UnrecognizedOutputError


class ReplicateClient:
    """Minimal client for Replicate's predictions API.

    Args:
        api_token: Optional explicit token; defaults to
            ``CONCERTO['portraits']['replicate_api_token']``.

    Raises:
        ValueError: If no API token is configured.
    """

    def __init__(self, api_token: str | None = None) -> None:
        """Initialize the client with the configured token and timeouts."""
        self._config = get_config().portraits
        token = api_token or self._config.replicate_api_token
        if not token:
            msg = "No Replicate API token configured. Set CONCERTO['portraits']['replicate_api_token']."
            raise ValueError(msg)
        self.base_url = self._config.replicate_api_url.rstrip("/")
        self.headers: dict[str, str] = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }

    def run(self, model: str, model_input: dict[str, Any]) -> object:
        """Run *model* on *model_input* and return the prediction output.

        Args:
            model: ``owner/name`` for an official model, or
                ``owner/name:version`` for a pinned version.
            model_input: The model's input parameters.

        Returns:
            The raw ``output`` of the succeeded prediction.

        Raises:
            ValueError: If *model* is not in ``owner/name[:version]`` form.
            InferenceError: If the API fails, the prediction fails, or it does
                not finish within ``max_wait`` seconds.
        """
        match = MODEL_PATTERN.match(model)
        if match is None:
            msg = f"Invalid Replicate model {model!r}; use owner/model or owner/model:version"
            raise ValueError(msg)

        if match["version"]:
            url = f"{self.base_url}/predictions"
            body: dict[str, Any] = {"version": match["version"], "input": model_input}
        else:
            url = f"{self.base_url}/models/{match['owner']}/{match['name']}/predictions"
            body = {"input": model_input}

        deadline = time.monotonic() + self._config.max_wait
        with httpx.Client(timeout=self._config.request_timeout, headers=self.headers) as client:
            prediction = self._request(client, "POST", url, json=body, headers={"Prefer": "wait"})
            logger.info("Replicate prediction %s created for %s", prediction.get("id"), model)

            while prediction.get("status") not in TERMINAL_STATUSES:
                if time.monotonic() >= deadline:
                    msg = f"Prediction {prediction.get('id')} did not finish within {self._config.max_wait:.0f}s"
                    raise InferenceError(msg)
                time.sleep(self._config.poll_interval)
                urls = prediction.get("urls") or {}
                poll_url = urls.get("get") or f"{self.base_url}/predictions/{prediction['id']}"
                prediction = self._request(client, "GET", poll_url)

        if prediction.get("status") != "succeeded":
            logger.warning(
                "Replicate prediction %s ended %s: %s",
                prediction.get("id"),
                prediction.get("status"),
                prediction.get("error"),
            )
            raise InferenceError
        return prediction.get("output")

    def download(self, url: str) -> tuple[bytes, str]:
        """Fetch a generated image.

        Args:
            url: The image URL returned by :func:`decode_output`.

        Returns:
            The image bytes and its content type.

        Raises:
            InferenceError: If the image cannot be downloaded.
        """
        try:
            response = httpx.get(url, timeout=self._config.request_timeout, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Could not download generated image: %s", exc)
            raise InferenceError("The generated image could not be downloaded.") from exc
        content_type = response.headers.get("content-type", "image/png").split(";")[0].strip()
        return response.content, content_type

    @staticmethod
    def _request(client: httpx.Client, method: str, url: str, **kwargs: Any) -> dict[str, Any]:  # noqa: ANN401
        try:
            response = client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("Replicate API request failed: %s for URL %s", exc.response.status_code, exc.request.url)
            raise InferenceError from exc
        except httpx.RequestError as exc:
            logger.warning("Replicate API connection error for URL %s: %s", url, exc)
            raise InferenceError from exc
        data = response.json()
        if not isinstance(data, dict):
            raise InferenceError
        return data
