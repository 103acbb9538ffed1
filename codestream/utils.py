import logging
import re

from codestream.config import Settings
from codestream.llm_client import ChatLlmClient
from codestream.model_props import normalize_model_name

logger = logging.getLogger("codestream")

FENCED_BLOCK_RE = re.compile(r"```[\w+-]*\n([\s\S]*?)```")
FILE_WRAPPER_RE = re.compile(r'^\s*<file path="[^"]*">\n?([\s\S]*?)\n?(?:</file>\s*)?$')


class Utils():
    settings: Settings

    # -----------------------
    # General Utils
    # -----------------------

    def clean_triple_backticks(self, code) -> str:
        pattern = r'```[a-zA-Z]*\n?|```\n?'
        return re.sub(pattern, '', code)

    def extract_code_content(self, text: str) -> str:
        """
        Unwrap a completion: first fenced block if there is one, otherwise the text
        itself, minus a stray <file path="..."> wrapper the model may have echoed.
        """
        content = text or ""
        if "```" in content:
            m = FENCED_BLOCK_RE.search(content)
            content = m.group(1) if m else self.clean_triple_backticks(content)

        wrapped = FILE_WRAPPER_RE.match(content)
        if wrapped:
            content = wrapped.group(1)
        return content.strip("\n")

    def unsafe_string_format(self, dest_string, print_unused_keys_report=True, **kwargs):
        """
        Formats a destination string by replacing placeholders with corresponding values from kwargs.
        Placeholders whose key is not in kwargs are left untouched and reported.

        it works differently from the standard "format" method as instead of looking for all the potential keys, looks only for the keys as passed in kwargs
        """
        missing_keys = []

        def replacer(match):
            key = match.group(1)
            if key in kwargs:
                return str(kwargs[key])
            else:
                missing_keys.append(key)
                return match.group(0)  # Leave the placeholder unchanged

        pattern = re.compile(r'\{(\w+)\}')
        result = pattern.sub(replacer, dest_string)
        if missing_keys and print_unused_keys_report:
            logger.info(f"\033[93m\033[3mMissing keys within string-to-format in unsafe_string_format: {', '.join(missing_keys)}\033[0m")
        return result

    # -----------------------
    # LLM plumbing
    # -----------------------

    def _build_chat_llm_for_model(self, model_name: str, max_output_tokens: int | None = None):
        """
        Build a per-request chat client for the given model name.
        Returns None if creation fails; callers decide whether that is fatal.
        """
        settings = self.settings
        try:
            return ChatLlmClient(
                model_name=normalize_model_name(model_name or settings.default_model),
                vertex_project=settings.vertex_project,
                vertex_region=settings.vertex_region,
                timeout=settings.llm_timeout,
                temperature=settings.temperature,
                max_output_tokens=max_output_tokens or settings.max_tokens,
            )
        except Exception as e:
            logger.info(f"Warning: Could not initialize LLM for {model_name}: {e}. ")
            return None
