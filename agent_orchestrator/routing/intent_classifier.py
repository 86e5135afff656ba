"""
Rule-based intent signals.

The IntentClassifier is pure: no network calls and no session mutation.
It is intentionally permissive; the FollowUpResolver's guard is the
correctness backstop for what it over-triggers.
"""

import re
from typing import Iterable, Optional

from ..config import IntentConfig
from ..schemas.decisions import IntentSignals
from ..state.models import SessionContext
from . import follow_up_state

NUMBERED_OPTION = re.compile(r"\b\d+[\.\)]\s+", re.MULTILINE)
POSITION_NUMBER = re.compile(r"\b(?:the\s+|number\s+)?(\d+)\b", re.IGNORECASE)
ENTITY_ID_LOOKUP = re.compile(r"\b(details?|open|view|get)\b.*(?:#\d+|\bid\s*\d+)\b", re.IGNORECASE)


def _alternation(words: Iterable[str]) -> str:
    return "|".join(re.escape(w) for w in words)


def contains_any_word(message: str, words: Iterable[str]) -> bool:
    words = [w for w in words if w]
    if not words:
        return False
    return re.search(rf"\b({_alternation(words)})\b", message, re.IGNORECASE) is not None


class IntentClassifier:
    def __init__(self, config: Optional[IntentConfig] = None):
        self.config = config or IntentConfig()

    def analyze(self, message: str, context: SessionContext) -> IntentSignals:
        has_context = follow_up_state.has_entity_list_context(context)
        return IntentSignals(
            has_entity_list_context=has_context,
            is_explicit_list_request=self.is_explicit_list_request(message),
            is_follow_up_question=self.is_follow_up_question(message, has_context),
            is_positional_reference=self.is_positional_reference(message),
            is_explicit_entity_lookup=self.is_explicit_entity_lookup(message),
            is_option_selection=self.is_option_selection(message, context),
            extracted_position=self.bounded_position(message),
        )

    def bounded_position(self, message: str) -> Optional[int]:
        position = self.extract_position(message)
        if position is None or not 1 <= position <= self.config.max_positional_index:
            return None
        return position

    def is_explicit_list_request(self, message: str) -> bool:
        """A list/search verb, a refresh word, or 'all/every <records>'."""
        if contains_any_word(message, self.config.list_verbs):
            return True
        if contains_any_word(message, self.config.refresh_words):
            return True
        if not self.config.record_terms:
            return False
        pattern = rf"\b(all|every)\s+({_alternation(self.config.record_terms)})\b"
        return re.search(pattern, message, re.IGNORECASE) is not None

    def looks_like_follow_up(self, message: str) -> bool:
        """Question mark, follow-up keyword or pronoun; ignores list context."""
        if not message.strip():
            return False
        if "?" in message:
            return True
        if contains_any_word(message, self.config.followup_keywords):
            return True
        return contains_any_word(message, self.config.followup_pronouns)

    def is_follow_up_question(self, message: str, has_entity_list_context: bool) -> bool:
        if not has_entity_list_context:
            return False
        if self.is_explicit_list_request(message):
            return False
        return self.looks_like_follow_up(message)

    def is_explicit_entity_lookup(self, message: str) -> bool:
        if self.config.entity_terms:
            pattern = rf"\b({_alternation(self.config.entity_terms)})\s*(?:#|id\s*)?\d+\b"
            if re.search(pattern, message, re.IGNORECASE):
                return True
        return ENTITY_ID_LOOKUP.search(message) is not None

    def extract_position(self, message: str) -> Optional[int]:
        for word, position in self.config.ordinal_map.items():
            if re.search(rf"\b{re.escape(word)}\b", message, re.IGNORECASE):
                return int(position)
        match = POSITION_NUMBER.search(message)
        if match:
            return int(match.group(1))
        return None

    def is_positional_reference(self, message: str) -> bool:
        parts = []
        if self.config.ordinal_map:
            parts.append(_alternation(self.config.ordinal_map))
        parts.append(r"the\s+\d+(?:st|nd|rd|th)?")
        parts.append(r"number\s+\d+")
        if self.config.positional_entity_words:
            parts.append(rf"(?:{_alternation(self.config.positional_entity_words)})\s*(?:#\s*)?\d+")

        if not re.search(rf"\b({'|'.join(parts)})\b", message, re.IGNORECASE):
            return False

        position = self.extract_position(message)
        return position is not None and 1 <= position <= self.config.max_positional_index

    def is_option_selection(self, message: str, context: SessionContext) -> bool:
        """
        A bare number picking an entry of the last presented list, or of a
        numbered menu in the last assistant message.
        """
        trimmed = message.strip()
        # isdigit() also accepts superscripts, which int() rejects
        if not trimmed.isdecimal():
            return False
        option = int(trimmed)
        if option < 1:
            return False

        entity_list = context.last_entity_list
        if entity_list is not None and entity_list.entity_ids:
            start = max(1, entity_list.start_position)
            if start <= option <= entity_list.last_position:
                return True

        if option > self.config.max_option_selection:
            return False

        last_assistant = context.last_assistant_message()
        if last_assistant is None or not last_assistant.content:
            return False
        return NUMBERED_OPTION.search(last_assistant.content) is not None
