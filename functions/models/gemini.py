# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================


import time
import logging
from google import genai
from google.genai import types
from models import api_config
from typing import List, Type, TypeVar

logger = logging.getLogger(__name__)

API_KEY_LOGGING_MESSAGE = "Ran with user-specified API key"
ANALYSIS_MAX_OUTPUT_TOKENS = 300
ANALYSIS_TEMPERATURE = 0.2

T = TypeVar("T")


class GeminiInvalidResponseException(Exception):
    pass


class GeminiNotConfiguredException(Exception):
    pass


def has_api_key(api_key: str | None = None) -> bool:
    return bool(api_key or api_config.DEFAULT_API_KEY)


def _make_client(api_key: str | None) -> genai.Client:
    if not api_key:
        api_key = api_config.DEFAULT_API_KEY
    else:
        logger.info(API_KEY_LOGGING_MESSAGE)
    if not api_key:
        raise GeminiNotConfiguredException("Gemini API key not configured.")
    return genai.Client(api_key=api_key)


def call_predict_with_image(
    prompt: str,
    image_bytes: bytes,
    model: str = api_config.VISION_MODEL,
    api_key: str | None = None,
) -> str:
    """Calls Gemini with a prompt and an issue photo."""
    client = _make_client(api_key)

    start_time = time.time()
    truncated_query = (prompt[:200] + "...") if len(prompt) > 200 else prompt
    logger.info("Calling Gemini with image, prompt: '%s'", truncated_query)
    response = client.models.generate_content(
        model=model,
        contents=[
            prompt,
            # Issue photos are normalized to JPEG before they are stored.
            types.Part.from_bytes(data=image_bytes, mime_type="image/jpeg"),
        ],
        config=types.GenerateContentConfig(
            temperature=ANALYSIS_TEMPERATURE,
            max_output_tokens=ANALYSIS_MAX_OUTPUT_TOKENS,
        ),
    )
    logger.info("Gemini image call took: %.2fs", time.time() - start_time)
    if not response.text:
        raise GeminiInvalidResponseException()
    return response.text


def call_predict_with_schema(
    query: str,
    response_schema: Type[T],
    model: str = api_config.TEXT_MODEL,
    api_key: str | None = None,
) -> T | List[T]:
    """Calls Gemini with a response schema for structured output."""
    client = _make_client(api_key)
    start_time = time.time()
    truncated_query = (query[:200] + "...") if len(query) > 200 else query
    logger.info("Calling Gemini with schema, prompt: '%s'", truncated_query)
    response = client.models.generate_content(
        model=model,
        contents=query,
        config={
            "response_mime_type": "application/json",
            "response_schema": response_schema,
            "temperature": 0,
        },
    )
    logger.info("Gemini with schema call took: %.2fs", time.time() - start_time)
    if not response.parsed:
        raise GeminiInvalidResponseException()
    return response.parsed
