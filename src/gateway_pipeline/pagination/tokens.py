"""Opaque continuation tokens for resuming a truncated pagination run.

A token is the URL-safe base64 (unpadded) encoding of a JSON
``ContinuationTokenData`` document. Decoding never raises: any malformed
token simply yields None and the run starts from the first page.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
import time
from typing import Optional

from pydantic import ValidationError

from ..models.pagination import ContinuationTokenData, PaginationStrategyType

__all__ = ["encode_continuation_token", "decode_continuation_token", "create_continuation_token"]

logger = logging.getLogger(__name__)


def encode_continuation_token(data: ContinuationTokenData) -> str:
    raw = json.dumps(data.model_dump(mode="json"), separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def decode_continuation_token(token: str) -> Optional[ContinuationTokenData]:
    if not token:
        return None
    padded = token + "=" * (-len(token) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        return ContinuationTokenData.model_validate(json.loads(raw.decode("utf-8")))
    except (binascii.Error, UnicodeError, ValueError, ValidationError) as e:
        logger.debug("Ignoring malformed continuation token: %s", e)
        return None


def create_continuation_token(
    strategy: PaginationStrategyType,
    cursor: str,
    items_fetched: int,
    characters_fetched: int,
    action_id: str,
) -> str:
    return encode_continuation_token(
        ContinuationTokenData(
            strategy=strategy,
            cursor=cursor,
            itemsFetched=items_fetched,
            charactersFetched=characters_fetched,
            createdAt=int(time.time() * 1000),
            actionId=action_id,
        )
    )
