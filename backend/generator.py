# backend/generator.py
import json
import logging
import os

from dotenv import load_dotenv
from openai import OpenAI, OpenAIError

from errors import UpstreamFailure

load_dotenv()

logger = logging.getLogger("cvforge.generator")

DEFAULT_MODEL = "llama-3.3-70b-versatile"
MIN_HTML_LENGTH = 500

SYSTEM_PROMPT = (
    "You are a professional CV writer and designer. Return one complete, self-contained "
    "HTML document starting with <!DOCTYPE html>, with inline CSS and no scripts."
)


class CVGenerator:
    """Turns structured form data into a CV HTML document via an OpenAI-compatible API."""

    def __init__(self, api_key: str = None, base_url: str = None, model: str = DEFAULT_MODEL):
        self.model = model
        self.client = OpenAI(api_key=api_key, base_url=base_url) if api_key else None
        if self.client is None:
            logger.warning("OPENAI_API_KEY is missing. CV generation requests will fail.")

    @classmethod
    def from_env(cls):
        return cls(
            api_key=os.getenv("OPENAI_API_KEY"),
            base_url=os.getenv("OPENAI_BASE_URL") or None,
            model=(os.getenv("OPENAI_MODEL") or DEFAULT_MODEL).strip(),
        )

    def build_prompt(self, form_data: dict, template: str, industry: str) -> str:
        return (
            f"Create a {template} CV for the {industry} industry from this candidate data.\n"
            f"{json.dumps(form_data, ensure_ascii=False, default=str)}"
        )

    def generate(self, form_data: dict, template: str, industry: str) -> str:
        if self.client is None:
            raise UpstreamFailure("AI service is not configured")
        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": self.build_prompt(form_data, template, industry)},
                ],
                temperature=0.7,
            )
        except OpenAIError as e:
            logger.exception("CV generation request failed for model '%s'", self.model)
            raise UpstreamFailure("CV generation failed") from e

        html = (completion.choices[0].message.content or "").strip()
        if html.startswith("```"):
            html = html.strip("`").removeprefix("html").strip()
        if len(html) < MIN_HTML_LENGTH:
            raise UpstreamFailure("CV generation produced invalid output")
        return html
