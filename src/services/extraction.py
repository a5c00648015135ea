"""
LLM field extraction with OpenAI + Instructor.

Text fields are answered with a plain completion. List fields use Instructor
with a Pydantic response model generated from the field's item shape, wrapped
in an object with an `items` array.
"""

import json
import logging
import os
import re
from functools import lru_cache
from typing import Any, List, Optional, Type

import instructor
from openai import OpenAI
from pydantic import BaseModel, create_model

from ..pipeline.errors import ExtractionError
from ..pipeline.schema import AttrType, FieldKind, FieldSpec

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"
SYSTEM_PROMPT = (
    "You extract facts about an organization from scraped web page text. "
    "Only use information explicitly stated in the text. Do not infer or invent values."
)


def humanize(name: str) -> str:
    """`studentOrgs` -> `student orgs`"""
    return re.sub(r"(?<=[a-z0-9])(?=[A-Z])", " ", name).replace("_", " ").lower()


def default_instruction(spec: FieldSpec) -> str:
    if spec.kind is FieldKind.TEXT:
        return (
            f"Summarize what the text says about the organization's {humanize(spec.name)} "
            "in 1-3 clear sentences.\nReturn a simple string."
        )
    example = {attr: "..." for attr, _ in spec.item_shape}
    required = [attr for attr, attr_type in spec.item_shape if attr_type is AttrType.TEXT]
    return (
        f"Extract a list of {humanize(spec.name)} from the text.\n"
        f"Return a JSON array of objects like: {json.dumps(example)}\n"
        f"Skip entries missing any of: {', '.join(required) or 'none'}."
    )


def build_prompt(spec: FieldSpec, text: str) -> str:
    instruction = spec.prompt or default_instruction(spec)
    prompt = f'Extract information for field "{spec.name}" from the following page text.\n\n{instruction}\n\nText:\n{text}'
    if spec.kind is FieldKind.RECORDS:
        prompt += '\nReturn as JSON with an "items" array.'
    return prompt


@lru_cache(maxsize=None)
def items_response_model(spec: FieldSpec) -> Type[BaseModel]:
    """Response model `{items: [<item>]}` for a list field."""
    return create_model(
        spec.item_model().__name__ + "List",
        items=(List[spec.item_model()], ...),
    )


class FieldExtractor:
    """Converts page text into a value matching a field's declared kind."""

    def __init__(
        self,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[OpenAI] = None,
        instructor_client: Optional[Any] = None,
    ):
        self.model = model or os.getenv("OPENAI_MODEL", DEFAULT_MODEL)
        if client is None:
            # no retries: a failed call yields no value for that URL
            client = OpenAI(api_key=api_key or os.getenv("OPENAI_API_KEY"), max_retries=0)
        self.client = client
        self.instructor_client = instructor_client or instructor.from_openai(client)

    def extract(self, spec: FieldSpec, text: str) -> Any:
        """Extract one field value from page text.

        Returns:
            str for text fields, list of dicts for list fields

        Raises:
            ExtractionError: backend failure or unsupported field kind
        """
        if not text or not text.strip():
            raise ExtractionError(f"No text to extract '{spec.name}' from")

        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_prompt(spec, text)},
        ]

        if spec.kind is FieldKind.TEXT:
            try:
                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=0,
                )
            except Exception as e:
                raise ExtractionError(f"Extraction failed for field '{spec.name}': {e}") from e
            content = response.choices[0].message.content or ""
            return content.strip()

        if spec.kind is FieldKind.RECORDS:
            try:
                result = self.instructor_client.chat.completions.create(
                    model=self.model,
                    response_model=items_response_model(spec),
                    messages=messages,
                    temperature=0,
                )
            except Exception as e:
                raise ExtractionError(f"Extraction failed for field '{spec.name}': {e}") from e
            return [item.model_dump(exclude_none=True) for item in result.items]

        raise ExtractionError(f"Unsupported field kind {spec.kind!r} for field '{spec.name}'")
