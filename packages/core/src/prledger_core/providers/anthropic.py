from __future__ import annotations

from prledger_core.providers.base import BaseReviewer


class AnthropicReviewer(BaseReviewer):
    MODEL = "claude-sonnet-4-20250514"
    # Low temperature keeps titles stable between runs, which keeps fingerprints stable.
    TEMPERATURE = 0.2

    def __init__(self, api_key: str, timeout: float = 120.0):
        super().__init__(timeout=timeout)
        try:
            from anthropic import Anthropic
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for this provider. "
                "Install it with: pip install 'prledger[anthropic]'"
            )
        # Retries are ours; the SDK's own retry loop would multiply them.
        self.client = Anthropic(api_key=api_key, timeout=timeout, max_retries=0)

    def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        # anthropic is optional; __init__ already validated it is installed.
        from anthropic.types import TextBlock

        response = self.client.messages.create(
            model=self.MODEL,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
        )
        text_blocks = [block.text for block in response.content if isinstance(block, TextBlock)]
        return "".join(text_blocks).strip()
