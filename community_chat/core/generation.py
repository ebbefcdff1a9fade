"""
Response Generation
===================

Boundary to the text producer behind the chat stream. The shipped
implementation is a keyword-matching stub; a language-model backed
generator plugs in by subclassing :class:`ResponseGenerator`.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Tuple


class ResponseGenerator(ABC):
    """Produces the assistant's reply for one query."""

    @abstractmethod
    async def generate(self, query: str) -> str:
        """Return the full response text for ``query``."""

    async def stream(self, query: str) -> AsyncIterator[str]:
        """
        Yield the response as whitespace-delimited tokens.

        Every token but the last keeps one trailing space, so concatenating
        the tokens reproduces the words of the response separated by single
        spaces.
        """
        for token in tokenize(await self.generate(query)):
            yield token


def tokenize(text: str) -> List[str]:
    """Split text into word tokens ready to be streamed."""
    words = text.split()
    return [word + " " for word in words[:-1]] + words[-1:]


HIKING_RESPONSE = (
    "I found some great hiking trails in your area! Here are a few popular options: "
    "Bear Mountain Trail (moderate difficulty, 3.2 miles), Sunset Ridge Loop (easy, 1.8 miles), "
    "and Eagle Peak Summit (challenging, 5.7 miles). "
    "Would you like more details about any of these trails?"
)

CYCLING_RESPONSE = (
    "There are several excellent cycling routes nearby! I recommend the Riverside Path "
    "(easy, 8 miles of paved trail), Mountain Loop Road (moderate, 12 miles with scenic views), "
    "and the Advanced Hill Circuit (challenging, 15 miles with steep climbs). "
    "Which type of cycling experience are you looking for?"
)

FOOD_RESPONSE = (
    "Here are some great local restaurants: The Mountain View Café (farm-to-table, outdoor seating), "
    "Trailhead Grill (burgers and craft beer), and Summit Bistro (fine dining with valley views). "
    "What type of cuisine are you in the mood for?"
)

DEFAULT_RESPONSE = (
    "Thanks for your message! I'm here to help you discover outdoor activities, restaurants, "
    "and local attractions. You can ask me about hiking trails, cycling routes, places to eat, "
    "or any other activities you're interested in. What would you like to explore today?"
)


class RuleBasedGenerator(ResponseGenerator):
    """Keyword-matching stub used until a language model is wired in."""

    rules: Tuple[Tuple[Tuple[str, ...], str], ...] = (
        (("hiking", "trail"), HIKING_RESPONSE),
        (("cycling", "bike"), CYCLING_RESPONSE),
        (("restaurant", "food", "eat"), FOOD_RESPONSE),
    )

    async def generate(self, query: str) -> str:
        lowered = query.lower()
        for keywords, response in self.rules:
            if any(keyword in lowered for keyword in keywords):
                return response
        return DEFAULT_RESPONSE
