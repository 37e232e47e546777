import asyncio
import logging
import pathlib
from collections.abc import Callable
from collections.abc import Sequence
from typing import Any
from uuid import uuid4

import httpx
import jinja2
import openai
from openai import AsyncOpenAI
from openai import OpenAIError

from finsight.core.config import Settings
from finsight.core.config import settings as default_settings
from finsight.core.credentials import CredentialProvider
from finsight.core.credentials import default_providers
from finsight.core.credentials import resolve_credential
from finsight.core.exceptions import AuthenticationError
from finsight.core.exceptions import ConfigurationError
from finsight.core.exceptions import GenerationTimeoutError
from finsight.core.exceptions import GenerationUnavailableError
from finsight.models.document_models import DocumentKind
from finsight.models.document_models import GenerationRequest
from finsight.services.schema_contract import SchemaContract

# Configure module logger
logger = logging.getLogger(__name__)

DOCUMENT_DELIMITER = "=== DOCUMENT: {name} ==="

# --- Reusable Jinja2 Environment ---
PROMPT_DIR = pathlib.Path(__file__).parent / "prompt_templates"
env = jinja2.Environment(loader=jinja2.FileSystemLoader(PROMPT_DIR), trim_blocks=True, lstrip_blocks=True)


def render_prompt(template_name: str, **context: Any) -> str:
    try:
        return env.get_template(template_name).render(**context)
    except jinja2.TemplateNotFound:
        logger.error("Template not found: %s (in %s)", template_name, PROMPT_DIR)
        raise ConfigurationError(f"Internal configuration error: Template '{template_name}' not found.") from None


# ---------------------------------------------------------------
# Request -> chat message content parts
# ---------------------------------------------------------------
def build_content_parts(request: GenerationRequest) -> list[dict[str, Any]]:
    """Instruction text first, then each attachment in order behind a delimiter line naming its source."""
    parts: list[dict[str, Any]] = [{"type": "text", "text": request.instructions}]
    for doc in request.attachments:
        delimiter = DOCUMENT_DELIMITER.format(name=doc.name)
        if doc.kind is DocumentKind.TABULAR:
            parts.append({"type": "text", "text": f"{delimiter}\n{doc.payload}"})
        else:
            parts.append({"type": "text", "text": delimiter})
            parts.append(
                {
                    "type": "file",
                    "file": {
                        "filename": doc.name,
                        "file_data": f"data:{doc.media_type};base64,{doc.payload}",
                    },
                }
            )
    return parts


def _first_content(rsp: Any, request_id: str) -> str:
    if not rsp or not getattr(rsp, "choices", None):
        logger.error("[%s] Invalid response structure from LLM API: %s", request_id, str(rsp))
        raise GenerationUnavailableError("The analysis service did not generate a valid response.")

    message = getattr(rsp.choices[0], "message", None)
    content = getattr(message, "content", None) if message is not None else None
    if not content or not content.strip():
        logger.error("[%s] Empty content in LLM API response (finish_reason=%s)", request_id, getattr(rsp.choices[0], "finish_reason", None))
        raise GenerationUnavailableError("The analysis service did not generate a valid response.")
    return content.strip()


class AnalysisInvoker:
    """Calls the external generation service with low-variance settings.

    Credentials come from an explicit, ordered list of providers given at
    construction time; a caller-supplied key always takes precedence and gets
    a client that is closed after the call. Only clients for server-side keys
    are kept between calls. No retry is performed: one failed call is one
    reported failure.
    """

    def __init__(
        self,
        credential_providers: Sequence[CredentialProvider] | None = None,
        config: Settings | None = None,
        client_factory: Callable[[str], AsyncOpenAI] | None = None,
    ) -> None:
        self.config = config or default_settings
        self.credential_providers = (
            list(credential_providers) if credential_providers is not None else default_providers(self.config)
        )
        self._client_factory = client_factory or self._build_client
        self._clients: dict[str, AsyncOpenAI] = {}

    def _build_client(self, api_key: str) -> AsyncOpenAI:
        timeout_config = httpx.Timeout(self.config.LLM_CONNECT_TIMEOUT, read=self.config.LLM_READ_TIMEOUT)
        return AsyncOpenAI(
            base_url=self.config.llm_base_url,
            api_key=api_key,
            default_headers={"X-Title": "finsight"},
            timeout=timeout_config,
            max_retries=0,
        )

    def _client_for(self, api_key: str) -> AsyncOpenAI:
        if api_key not in self._clients:
            self._clients[api_key] = self._client_factory(api_key)
        return self._clients[api_key]

    async def invoke(
        self,
        request: GenerationRequest,
        contract: SchemaContract,
        api_key: str | None = None,
        request_id: str | None = None,
    ) -> str:
        """Send ``request`` and return the raw response text.

        Raises:
            AuthenticationError: no credential is configured, or the service rejected it.
            GenerationTimeoutError: the call exceeded ``llm_deadline_seconds``.
            GenerationUnavailableError: the service failed or returned no text.
        """
        request_id = request_id or str(uuid4())
        key = resolve_credential(self.credential_providers, api_key)
        # Caller-supplied keys get a client for this call only; it is never cached
        if api_key and api_key.strip():
            client = self._client_factory(key)
            try:
                return await self._complete(client, request, contract, request_id)
            finally:
                await client.close()
        return await self._complete(self._client_for(key), request, contract, request_id)

    async def _complete(
        self,
        client: AsyncOpenAI,
        request: GenerationRequest,
        contract: SchemaContract,
        request_id: str,
    ) -> str:
        logger.info(
            "[%s] Making LLM API call: model=%s contract=%s attachments=%d",
            request_id,
            self.config.model_id,
            contract.qualified_name,
            len(request.attachments),
        )
        try:
            rsp = await asyncio.wait_for(
                client.chat.completions.create(
                    model=self.config.model_id,
                    messages=[{"role": "user", "content": build_content_parts(request)}],
                    response_format=contract.response_format(),
                    temperature=self.config.llm_temperature,
                    max_tokens=self.config.llm_max_tokens,
                ),
                timeout=self.config.llm_deadline_seconds,
            )
        except (TimeoutError, openai.APITimeoutError) as e:
            logger.error("[%s] LLM call exceeded its deadline", request_id)
            raise GenerationTimeoutError("The analysis service did not respond in time.") from e
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            logger.error("[%s] LLM API rejected the credential: %s", request_id, str(e))
            raise AuthenticationError("The API key was rejected by the analysis service.") from e
        except OpenAIError as e:
            logger.error("[%s] OpenAI API error: %s", request_id, str(e), exc_info=True)
            raise GenerationUnavailableError(f"The analysis service is unavailable: {type(e).__name__}") from e

        content = _first_content(rsp, request_id)
        logger.debug("[%s] LLM response received, length: %d chars", request_id, len(content))
        return content

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
