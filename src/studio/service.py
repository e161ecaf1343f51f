"""Service for interacting with the Google Gemini API."""

import json
import logging
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, TypeVar

from google import genai
from google.genai import types
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .models import ChatConfig, ImageGenerationConfig, Script, ToolCall, ToolCallConfig
from .tools import TOOLS, ToolArgs

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Conversation roles as the Gemini API names them.
_ROLES = {"user": "user", "assistant": "model"}

TOOL_CALL_SYSTEM_PROMPT = (
    "You edit video scripts made of ordered shots.\n"
    "Apply the user's instruction by calling the provided functions. "
    "Refer to shots by their id. Do not invent ids; use only ids present "
    "in the script. Call nothing if the instruction needs no change."
)


def _retryer(retries: int, min_wait: int, max_wait: int) -> Retrying:
    return Retrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait_exponential(multiplier=2, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(Exception),
        reraise=True,
    )


def _property_schema(prop: dict[str, Any]) -> types.Schema:
    """Convert one pydantic JSON-schema property into a Gemini schema."""
    if "anyOf" in prop:
        variants = [v for v in prop["anyOf"] if v.get("type") != "null"]
        prop = {**variants[0], **{k: v for k, v in prop.items() if k != "anyOf"}}
    type_name = prop.get("type", "string")
    kwargs: dict[str, Any] = {"type": type_name.upper()}
    if "enum" in prop:
        kwargs["enum"] = [str(v) for v in prop["enum"]]
    if type_name == "array":
        kwargs["items"] = types.Schema(type="STRING")
    return types.Schema(**kwargs)


def function_declaration(
    name: str,
    description: str,
    args_model: type[ToolArgs],
) -> types.FunctionDeclaration:
    """Describe a registered tool to Gemini using its argument model."""
    json_schema = args_model.model_json_schema(by_alias=True)
    properties = {
        key: _property_schema(prop)
        for key, prop in json_schema.get("properties", {}).items()
    }
    return types.FunctionDeclaration(
        name=name,
        description=description,
        parameters=types.Schema(
            type="OBJECT",
            properties=properties,
            required=json_schema.get("required", []),
        ),
    )


class GeminiService:
    """Service to interact with Google Gemini API."""

    def __init__(self, api_key: str) -> None:
        """Initialize the service with an API key."""
        if not api_key:
            msg = (
                "API Key is missing. "
                "Set GEMINI_API_KEY env var or pass it as an argument."
            )
            raise ValueError(msg)
        self.client = genai.Client(api_key=api_key)

    def _call(self, retryer: Retrying, attempt: Callable[[], T], what: str) -> T:
        try:
            return retryer(attempt)
        except Exception as e:
            msg = f"Failed to {what}: {e}"
            raise RuntimeError(msg) from e

    def chat(
        self,
        history: Sequence[dict[str, str]],
        system: str | None = None,
        config: ChatConfig | None = None,
    ) -> str:
        """Send a conversation to the model and return its reply.

        Args:
            history: Root-first turns as ``{"role", "content"}`` dicts, with
                roles ``user`` or ``assistant``.
            system: Optional system instruction.
            config: Configuration for the conversation.

        Returns:
            str: The reply text.

        Raises:
            RuntimeError: If the model fails after retries.

        """
        if config is None:
            config = ChatConfig()
        contents = [
            types.Content(
                role=_ROLES.get(turn["role"], "user"),
                parts=[types.Part.from_text(text=turn["content"])],
            )
            for turn in history
        ]

        def _attempt() -> str:
            response = self.client.models.generate_content(
                model=config.model,
                contents=contents,
                config=types.GenerateContentConfig(
                    system_instruction=system,
                    temperature=config.temperature,
                ),
            )
            if not response.text:
                msg = "Empty response from model"
                raise RuntimeError(msg)
            return response.text

        retryer = _retryer(config.retries, config.min_wait, config.max_wait)
        reply = self._call(retryer, _attempt, "generate a reply")
        logger.debug("Received %d characters from %s", len(reply), config.model)
        return reply

    def propose_tool_calls(
        self,
        script: Script,
        instruction: str,
        config: ToolCallConfig | None = None,
    ) -> list[ToolCall]:
        """Ask the model which script edits would carry out ``instruction``.

        The proposals are returned unvalidated; applying them is up to the
        caller, where invalid calls become no-ops.

        Args:
            script: The script to edit.
            instruction: What the user wants changed.
            config: Configuration for the request.

        Returns:
            list[ToolCall]: Proposed calls in the order the model made them.

        Raises:
            RuntimeError: If the model fails after retries.

        """
        if config is None:
            config = ToolCallConfig()
        tool = types.Tool(
            function_declarations=[
                function_declaration(t.name, t.description, t.args_model)
                for t in TOOLS.values()
            ],
        )
        prompt = (
            f"Script:\n{json.dumps(script.to_json(), indent=2, ensure_ascii=False)}\n\n"
            f"Instruction: {instruction}"
        )

        def _attempt() -> list[ToolCall]:
            response = self.client.models.generate_content(
                model=config.model,
                contents=[types.Content(role="user", parts=[types.Part.from_text(text=prompt)])],
                config=types.GenerateContentConfig(
                    system_instruction=TOOL_CALL_SYSTEM_PROMPT,
                    temperature=config.temperature,
                    tools=[tool],
                ),
            )
            return [
                ToolCall(name=call.name or "", args=dict(call.args or {}))
                for call in response.function_calls or []
            ]

        retryer = _retryer(config.retries, config.min_wait, config.max_wait)
        calls = self._call(retryer, _attempt, "propose script edits")
        logger.info("Model proposed %d tool calls", len(calls))
        return calls

    def _save_image(self, data: bytes, output_path: Path) -> str:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with output_path.open("wb") as f:
            f.write(data)
        return str(output_path)

    def _generate_image_attempt(self, model_name: str, prompt: str, output_path: Path) -> str:
        response = self.client.models.generate_images(
            model=model_name,
            prompt=prompt,
            config=types.GenerateImagesConfig(number_of_images=1),
        )
        if response.generated_images:
            image = response.generated_images[0].image
            if image and image.image_bytes:
                return self._save_image(image.image_bytes, output_path)

        msg = "No image data in response"
        raise RuntimeError(msg)

    def generate_image(
        self,
        prompt: str,
        output_path: Path,
        config: ImageGenerationConfig | None = None,
    ) -> str:
        """Generate an image and save it as PNG.

        Args:
            prompt: Text prompt for image generation.
            output_path: Path to save the generated image.
            config: Configuration for image generation.

        Returns:
            str: The path to the saved image.

        Raises:
            RuntimeError: If generation fails after retries.

        """
        if config is None:
            config = ImageGenerationConfig()

        def _attempt() -> str:
            return self._generate_image_attempt(config.model, prompt, output_path)

        retryer = _retryer(config.retries, config.min_wait, config.max_wait)
        return self._call(retryer, _attempt, "generate image")
