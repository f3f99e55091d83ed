"""Token counting of a finished completion, for usage accounting."""
import logging
from functools import lru_cache

import tiktoken

logger = logging.getLogger(__name__)

FALLBACK_ENCODING = "cl100k_base"


@lru_cache(maxsize=16)
def _encoding_for(model: str) -> "tiktoken.Encoding":
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        return tiktoken.get_encoding(FALLBACK_ENCODING)


def count_tokens(text: str, model: str) -> int:
    """Count the tokens of `text` with the tokenizer of `model`.

    Unknown models are counted with the cl100k_base encoding.
    """
    return len(_encoding_for(model).encode(text, disallowed_special=()))
