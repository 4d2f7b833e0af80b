"""
Provably fair ordering for battle royale giveaways.

Every entry receives a fairness value derived from three seeds and the entry's
admission index:

- the server seed is fixed before collection opens and only its SHA-256
  commitment is published while entries are being collected;
- the two client seeds are supplied by the giveaway creator after collection
  closes.

Because the server seed is committed before anyone can see the entry list and
the client seeds arrive after the list is frozen, nobody can steer the order.
Once the seeds are revealed anyone can recompute every value and the full
elimination order.
"""

import hashlib
import hmac
import logging
import secrets
from collections.abc import Iterable

from .models import Entry, RankedEntry

log = logging.getLogger("royale-fairness")

HEX_PREFIX_LENGTH = 13  # 52 bits, the width of a double mantissa
_DENOMINATOR = 16**HEX_PREFIX_LENGTH


def derive(
    server_seed: str, client_seed1: str, client_seed2: str, sequence_index: int
) -> float:
    """
    Derive the fairness value for one entry.

    Args:
        server_seed: HMAC key committed before collection opened
        client_seed1: First seed supplied at reveal time
        client_seed2: Second seed supplied at reveal time
        sequence_index: 0-based admission index of the entry

    Returns:
        Float in [0, 1); identical inputs always give identical output
    """
    message = f"{client_seed1}:{client_seed2}:{sequence_index}"
    digest = hmac.new(
        server_seed.encode("utf-8"), message.encode("utf-8"), hashlib.sha512
    ).hexdigest()
    return int(digest[:HEX_PREFIX_LENGTH], 16) / _DENOMINATOR


def rank_entries(
    entries: Iterable[Entry],
    server_seed: str,
    client_seed1: str,
    client_seed2: str,
) -> tuple[RankedEntry, ...]:
    """
    Order entries safest first.

    Highest fairness value ranks first; equal values fall back to the lower
    sequence index so the order is total and reproducible.
    """
    ranked = [
        RankedEntry(
            entry_id=entry.entry_id,
            participant_id=entry.participant_id,
            sequence_index=entry.sequence_index,
            fairness_value=derive(
                server_seed, client_seed1, client_seed2, entry.sequence_index
            ),
        )
        for entry in entries
    ]
    ranked.sort(key=lambda item: (-item.fairness_value, item.sequence_index))
    log.debug("Ranked %s entries", len(ranked))
    return tuple(ranked)


def generate_server_seed() -> str:
    """Return a fresh 64 character hex server seed."""
    return secrets.token_hex(32)


def commit_server_seed(server_seed: str) -> str:
    """Public commitment for a server seed, shown before collection starts."""
    return hashlib.sha256(server_seed.encode("utf-8")).hexdigest()


def verify_commitment(server_seed: str, commitment: str) -> bool:
    return hmac.compare_digest(commit_server_seed(server_seed), commitment.lower())


__all__ = [
    "HEX_PREFIX_LENGTH",
    "commit_server_seed",
    "derive",
    "generate_server_seed",
    "rank_entries",
    "verify_commitment",
]
