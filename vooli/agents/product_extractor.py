from __future__ import annotations

from vooli.config import settings
from vooli.llm_client import CompletionClient, client as llm_client, get_model
from vooli.models.completions import ProductDetails
from vooli.services.prompt_store import render_prompt
from vooli.tools import web_utils


class ProductExtractor:
    """Turns scraped page text into a typed product record."""

    name = "product_extractor"

    def __init__(self, completion: CompletionClient | None = None, model: str | None = None):
        self.completion = completion
        self.model = model or get_model()

    async def extract(self, url: str, content: str) -> ProductDetails:
        active = self.completion or llm_client()
        page_text = web_utils.clean_content(content, max_length=settings.extractor_max_page_chars)
        return await active.generate_object(
            schema=ProductDetails,
            system=render_prompt("product_extraction.system"),
            prompt=render_prompt("product_extraction.prompt", url=url, content=page_text),
            model=self.model,
            caller=self.name,
        )
