"""Beacon node event stream topics."""

TOPIC_BLOCK = "block"
TOPIC_BLOCK_GOSSIP = "block_gossip"
TOPIC_HEAD = "head"
TOPIC_FINALIZED_CHECKPOINT = "finalized_checkpoint"
TOPIC_BLOB_SIDECAR = "blob_sidecar"
TOPIC_CHAIN_REORG = "chain_reorg"
TOPIC_SINGLE_ATTESTATION = "single_attestation"

_DEFAULT_ALL_TOPICS = (
    TOPIC_BLOCK,
    TOPIC_BLOCK_GOSSIP,
    TOPIC_HEAD,
    TOPIC_FINALIZED_CHECKPOINT,
    TOPIC_BLOB_SIDECAR,
    TOPIC_CHAIN_REORG,
    TOPIC_SINGLE_ATTESTATION,
)

_OPT_IN_TOPICS = (TOPIC_SINGLE_ATTESTATION,)


def get_default_all_topics() -> list[str]:
    """Return every topic that can be subscribed to."""
    return list(_DEFAULT_ALL_TOPICS)


def get_opt_in_topics() -> list[str]:
    """Return the topics that are only subscribed to when a condition allows it."""
    return list(_OPT_IN_TOPICS)