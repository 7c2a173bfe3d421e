"""Base reviewer implementing the Template Method pattern.

All providers share the same review algorithm:
    review() → _build_system_prompt() + _build_user_prompt()
             → _call_with_retry() → _call_api()   ← only this differs per provider
             → _parse()

Subclasses implement two things only:
  - __init__: validate and store the SDK client
  - _call_api: make one raw API call and return the text response

The reviewer is an untrusted oracle. review() returns raw dicts exactly as the
model produced them; structural validation happens in
prledger_core.findings.findings_from_raw, never here.
"""

from __future__ import annotations

import json
import logging
import re
import time
from abc import ABC, abstractmethod

from prledger_core.errors import CollaboratorTimeoutError

logger = logging.getLogger(__name__)

# Shared defaults; subclasses may override as class attributes if needed.
_MAX_RETRIES = 3
_MAX_TOKENS = 4096
_TIMEOUT_SECONDS = 120.0


class BaseReviewer(ABC):
    MAX_RETRIES: int = _MAX_RETRIES
    MAX_TOKENS: int = _MAX_TOKENS
    MODEL: str = ""

    def __init__(self, timeout: float = _TIMEOUT_SECONDS):
        self.timeout = timeout

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def review(
        self,
        description: str,
        file_name: str,
        diff_patch: str,
        file_content: str,
        guidelines: str,
    ) -> list[dict]:
        """Review one file and return the raw findings the model reported.

        Raises CollaboratorTimeoutError when every attempt fails; the caller
        must then abandon the whole run.
        """
        system = self._build_system_prompt(guidelines)
        user = self._build_user_prompt(description, file_name, diff_patch, file_content)
        raw = self._call_with_retry(system, user)
        return self._parse(raw)

    # ------------------------------------------------------------------ #
    # Abstract: implement in each provider                                #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        """Make a single API call and return the raw text response.

        It should raise on failure (including timeouts) — _call_with_retry
        handles retries and logging.
        """

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def _call_with_retry(self, system_prompt: str, user_prompt: str) -> str:
        """Retry _call_api up to MAX_RETRIES times with exponential backoff."""
        last_error: Exception | None = None
        for attempt in range(self.MAX_RETRIES):
            try:
                return self._call_api(system_prompt, user_prompt)
            except Exception as e:
                last_error = e
                if attempt == self.MAX_RETRIES - 1:
                    break
                delay = 2**attempt
                logger.warning(
                    "%s API error (attempt %d/%d): %s. Retrying in %ds...",
                    self.__class__.__name__,
                    attempt + 1,
                    self.MAX_RETRIES,
                    e,
                    delay,
                )
                time.sleep(delay)

        logger.error(
            "%s API failed after %d attempts: %s",
            self.__class__.__name__,
            self.MAX_RETRIES,
            last_error,
        )
        raise CollaboratorTimeoutError(
            f"{self.__class__.__name__} did not answer after {self.MAX_RETRIES} attempts: {last_error}"
        ) from last_error

    def _build_system_prompt(self, guidelines: str) -> str:
        return f"""You are a strict and precise senior code reviewer.
Review the patch below and report issues according to the ruleset.

{guidelines}

Rules:
- Focus on added lines (starting with '+') for direct violations.
- Also consider implications of removed lines (starting with '-') — e.g. deleted null checks,
  removed error handling, dropped permission guards.
- Report each issue once. If one issue affects several files (for example a production file
  and its test file), list every affected place under "locations".
- Keep titles short and stable: the same issue must get the same title on every review.
- Do not comment on code that already follows best practices.
- Avoid assumptions when context is unclear. Be concise and actionable."""

    def _build_user_prompt(
        self,
        description: str,
        file_name: str,
        diff_patch: str,
        file_content: str,
    ) -> str:
        return f"""You are reviewing `{file_name}`.

## PR Description
{description}

## Diff
{diff_patch}

## Full File Content
{file_content}

### Output Format:
Respond with **only** a valid JSON list:

[
  {{
    "category": "<architecture|security|correctness|maintainability|performance|style>",
    "severity": "<high|medium|low>",
    "title": "<short, stable one-line title>",
    "explanation": "<why this is a problem>",
    "suggestion": "<what to do instead>",
    "fix_patch": "<optional unified diff fixing the issue, or null>",
    "symbol": "<enclosing function/class, e.g. OrderService.Submit, or null>",
    "locations": [
      {{"file": "<path>", "start_line": <new-file line>, "end_line": <new-file line>}}
    ]
  }},
  ...
]

Severity guide:
- high: security vulnerability, data loss risk, crash, logic bug on a main path
- medium: missing error handling, significant performance issue, fragile design
- low: code smell, unclear naming, style

If there are no issues, return: []
Do not return any text outside the JSON block."""

    def _parse(self, raw: str) -> list:
        """Parse the model's raw text response into a list of raw finding records."""
        try:
            # Strip only the outer ```json ... ``` fence that the model wraps
            # the response in, NOT backticks inside string values.
            cleaned = re.sub(r"^```(?:json)?\s*", "", (raw or "").strip())
            cleaned = re.sub(r"\s*```$", "", cleaned.strip())
            data = json.loads(cleaned)
        except json.JSONDecodeError:
            logger.warning(
                "%s: failed to parse response as JSON: %s",
                self.__class__.__name__,
                (raw or "")[:200],
            )
            return []
        if isinstance(data, dict) and isinstance(data.get("findings"), list):
            return data["findings"]
        if not isinstance(data, list):
            logger.warning("%s: expected a JSON list, got %s", self.__class__.__name__, type(data).__name__)
            return []
        return data
